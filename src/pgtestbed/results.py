"""Result models for pgtestbed.

Pydantic v2 models capturing what happened in a run. They form a small
hierarchy: individual checks roll up into a scenario result, scenario
results roll up into the run result.

Key Concepts:
    OverallStatus: PASSED, FAILED, ERROR, SKIPPED, RUNNING, PENDING.
    CheckResult: One verification step (readiness, data present, data
        absent). ``expected_failure`` marks the inverted checks, which pass
        when the underlying probe fails.
    ScenarioResult: Project, checks, error, timing. ``mark_complete()``
        computes duration and status.
    TestbedRunResult: All scenarios of a run. ``mark_complete()`` derives
        the overall status and a one-line summary.

Architecture Decisions:
    - ``mark_complete()`` pattern: the runner calls it when a unit is done;
      duration is derived from ISO timestamps.
    - Serialised with ``model_dump_json(indent=2)`` into ``summary.json``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class OverallStatus(str, Enum):
    """Status of a scenario or a run."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"
    RUNNING = "RUNNING"
    PENDING = "PENDING"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _seconds_between(start: str, end: str) -> float:
    return (datetime.fromisoformat(end) - datetime.fromisoformat(start)).total_seconds()


class CheckResult(BaseModel):
    """Outcome of one verification step."""

    name: str
    passed: bool
    expected_failure: bool = False
    detail: str = ""
    duration_seconds: float = 0.0


class ScenarioResult(BaseModel):
    """Outcome of one scenario."""

    name: str
    description: str = ""
    project: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    duration_seconds: float = 0.0
    checks: list[CheckResult] = Field(default_factory=list)
    status: OverallStatus = OverallStatus.PENDING
    error: str | None = None
    error_type: str | None = None
    project_deleted: bool = False
    pod_logs: list[str] = Field(default_factory=list)

    def mark_started(self) -> None:
        self.started_at = _now()
        self.status = OverallStatus.RUNNING

    def mark_complete(self) -> None:
        """Compute duration and derive status from error and checks."""
        self.completed_at = _now()
        if self.started_at:
            self.duration_seconds = _seconds_between(self.started_at, self.completed_at)
        if self.error:
            self.status = OverallStatus.FAILED
        elif all(c.passed for c in self.checks):
            self.status = OverallStatus.PASSED
        else:
            self.status = OverallStatus.FAILED

    def mark_skipped(self, reason: str) -> None:
        self.status = OverallStatus.SKIPPED
        self.error = reason

    @property
    def failed_checks(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed]


class TestbedRunResult(BaseModel):
    """Result of a full run across the selected scenarios."""

    __test__ = False  # not a pytest test class

    run_id: str
    image_name: str = ""
    version: str = ""
    os: str = ""
    started_at: str = Field(default_factory=_now)
    completed_at: str | None = None
    duration_seconds: float = 0.0
    scenarios: list[ScenarioResult] = Field(default_factory=list)
    overall_status: OverallStatus = OverallStatus.PENDING
    summary: str = ""
    error: str | None = None

    def scenario(self, name: str) -> ScenarioResult | None:
        return next((s for s in self.scenarios if s.name == name), None)

    def mark_complete(self) -> None:
        """Finalize the run: duration, overall status and summary."""
        self.completed_at = _now()
        self.duration_seconds = _seconds_between(self.started_at, self.completed_at)

        statuses = [s.status for s in self.scenarios]
        if self.error:
            self.overall_status = OverallStatus.ERROR
        elif not statuses or all(s == OverallStatus.SKIPPED for s in statuses):
            self.overall_status = OverallStatus.SKIPPED
        elif any(s in (OverallStatus.FAILED, OverallStatus.ERROR) for s in statuses):
            self.overall_status = OverallStatus.FAILED
        elif all(s in (OverallStatus.PASSED, OverallStatus.SKIPPED) for s in statuses):
            self.overall_status = OverallStatus.PASSED
        else:
            self.overall_status = OverallStatus.ERROR

        passed = statuses.count(OverallStatus.PASSED)
        failed = [s.name for s in self.scenarios if s.status == OverallStatus.FAILED]
        skipped = statuses.count(OverallStatus.SKIPPED)
        self.summary = f"{passed}/{len(statuses)} scenarios passed"
        if failed:
            self.summary += f", failed: {', '.join(failed)}"
        if skipped:
            self.summary += f", {skipped} skipped"
        self.summary += f" in {self.duration_seconds:.1f}s"

    @property
    def success(self) -> bool:
        return self.overall_status == OverallStatus.PASSED

"""Structured output for pgtestbed runs.

Every run produces a self-contained ``{run_id}/`` directory that can be
archived as a CI artifact.

Key Concepts:
    LogCollector: Creates ``{output_dir}/{run_id}/`` and writes into it.
    write_summary(): ``TestbedRunResult`` as JSON.
    write_junit(): One ``<testcase>`` per scenario, so CI systems can show
        scenario results without knowing the harness.
    save_pod_log(): Logs of the pods of a failed scenario.

Output Structure::

    {output_dir}/{run_id}/
    ├── summary.json
    ├── junit.xml
    └── persistent_redeploy/
        └── pods/
            └── postgresql-1-x7k2p.log
"""

from __future__ import annotations

from pathlib import Path
from xml.etree.ElementTree import Element, SubElement, tostring

from pgtestbed.logging import get_logger
from pgtestbed.results import OverallStatus, TestbedRunResult

logger = get_logger(__name__)


class LogCollector:
    """Writes reports and pod logs of one run.

    Parameters
    ----------
    output_dir
        Base directory for output.
    run_id
        Unique run identifier.
    """

    def __init__(self, output_dir: Path, run_id: str) -> None:
        self.run_dir = Path(output_dir) / run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id

    def pods_dir(self, scenario: str) -> Path:
        """Get or create the pod log directory of a scenario."""
        d = self.run_dir / scenario / "pods"
        d.mkdir(parents=True, exist_ok=True)
        return d

    def save_pod_log(self, scenario: str, pod: str, text: str) -> Path:
        path = self.pods_dir(scenario) / f"{pod}.log"
        path.write_text(text, encoding="utf-8")
        logger.debug("pod_log.saved", scenario=scenario, pod=pod, path=str(path))
        return path

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def write_summary(self, result: TestbedRunResult) -> Path:
        """Write machine-readable summary JSON."""
        path = self.run_dir / "summary.json"
        path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        logger.info("summary.written", path=str(path))
        return path

    def write_junit(self, result: TestbedRunResult) -> Path:
        """Write a JUnit XML report with one testcase per scenario."""
        path = self.run_dir / "junit.xml"
        path.write_bytes(render_junit(result))
        logger.info("junit.written", path=str(path))
        return path


def render_junit(result: TestbedRunResult) -> bytes:
    statuses = [s.status for s in result.scenarios]
    suite = Element(
        "testsuite",
        name=f"pgtestbed-{result.image_name or result.run_id}",
        tests=str(len(statuses)),
        failures=str(statuses.count(OverallStatus.FAILED)),
        errors=str(statuses.count(OverallStatus.ERROR)),
        skipped=str(statuses.count(OverallStatus.SKIPPED)),
        time=f"{result.duration_seconds:.3f}",
    )
    for scenario in result.scenarios:
        case = SubElement(
            suite,
            "testcase",
            classname="pgtestbed.scenarios",
            name=scenario.name,
            time=f"{scenario.duration_seconds:.3f}",
        )
        if scenario.status == OverallStatus.SKIPPED:
            SubElement(case, "skipped", message=scenario.error or "skipped")
        elif scenario.status in (OverallStatus.FAILED, OverallStatus.ERROR):
            failed = ", ".join(c.name for c in scenario.failed_checks)
            failure = SubElement(
                case,
                "failure",
                message=scenario.error or (f"failed checks: {failed}" if failed else "failed"),
                type=scenario.error_type or "ScenarioFailure",
            )
            failure.text = "\n".join(
                f"{c.name}: {'ok' if c.passed else 'FAILED'}" for c in scenario.checks
            )
    if result.error:
        SubElement(suite, "system-err").text = result.error
    return tostring(suite, encoding="utf-8", xml_declaration=True)

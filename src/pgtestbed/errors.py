"""
Structured error types for pgtestbed.

Every failure the harness can surface maps onto one of a handful of
categories, so the runner can decide what is fatal and the report can say
why a scenario stopped:

    ┌───────────────────────────────────────────────────────────────┐
    │                        TestbedError                            │
    │          (category, context, cause)                            │
    ├───────────────────────────────────────────────────────────────┤
    │  ConfigError            PlatformCommandError   ProbeError      │
    │  (CONFIG)               (PLATFORM)             (PROBE)         │
    │     │                      │                                   │
    │  MissingConfigError     ToolNotFoundError                      │
    │  InvalidConfigError                                            │
    │                                                                │
    │  ReadinessTimeoutError  ScenarioAssertionError                 │
    │  (TIMEOUT)              (ASSERTION)                            │
    └───────────────────────────────────────────────────────────────┘

The poller never raises. A poll that runs out of budget returns ``False``
and the caller turns that into ``ReadinessTimeoutError`` or
``ScenarioAssertionError`` when the outcome is fatal.

Usage:
    from pgtestbed.errors import PlatformCommandError

    try:
        cluster.new_project("pgtest-template-1a2b3c")
    except PlatformCommandError as e:
        log.error("project.create_failed", **e.to_dict())
        raise
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories used for reporting."""

    CONFIG = "CONFIG"
    PLATFORM = "PLATFORM"
    TIMEOUT = "TIMEOUT"
    ASSERTION = "ASSERTION"
    PROBE = "PROBE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only fields that are set end up in ``to_dict()``; anything that does not
    have a dedicated field goes into ``metadata``.
    """

    scenario: str | None = None
    project: str | None = None
    resource: str | None = None
    run_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["scenario", "project", "resource", "run_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class TestbedError(Exception):
    """Base class for all harness errors."""

    __test__ = False  # not a pytest test class

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TestbedError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ProbeError("insert failed").with_context(
                scenario="persistent_redeploy",
                resource="postgresql",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (preconditions)
# =============================================================================


class ConfigError(TestbedError):
    """Configuration error. Fatal before any platform call is made."""

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# =============================================================================
# PLATFORM ERRORS (oc / docker)
# =============================================================================


class PlatformCommandError(TestbedError):
    """An ``oc`` or ``docker`` invocation failed or timed out."""

    default_category = ErrorCategory.PLATFORM

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
        cause: Exception | None = None,
    ):
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message, cause=cause)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.command:
            result["command"] = " ".join(self.command)
        if self.returncode is not None:
            result["returncode"] = self.returncode
        if self.stderr:
            result["stderr"] = self.stderr.strip()[-2000:]
        return result


class ToolNotFoundError(PlatformCommandError):
    """A required CLI binary is not on PATH."""

    def __init__(self, tool: str, hint: str = ""):
        self.tool = tool
        message = f"{tool} CLI not found on PATH."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)


# =============================================================================
# SCENARIO ERRORS
# =============================================================================


class ReadinessTimeoutError(TestbedError):
    """A deployment did not become ready within its budget."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, resource: str, timeout: float, message: str | None = None):
        self.resource = resource
        self.timeout = timeout
        super().__init__(message or f"{resource} did not become ready within {timeout:g}s")


class ProbeError(TestbedError):
    """A database client command that must succeed did not."""

    default_category = ErrorCategory.PROBE


class ScenarioAssertionError(TestbedError):
    """A check did not produce the outcome the scenario requires."""

    default_category = ErrorCategory.ASSERTION


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "TestbedError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "PlatformCommandError",
    "ToolNotFoundError",
    "ReadinessTimeoutError",
    "ProbeError",
    "ScenarioAssertionError",
]

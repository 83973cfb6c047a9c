"""pgtestbed: integration scenarios for PostgreSQL container images on OpenShift.

For every scenario the harness creates a throwaway project, deploys the
image under test (directly or from a template), waits for it to become
ready, talks SQL to it through a client container, mutates the deployment
(redeploy, pod deletion, image upgrade, password change, scale-out) and
checks what happened to the data.

Key Concepts:
    TestbedConfig: Pydantic model built from ``IMAGE_NAME``, ``VERSION``,
        ``OS`` and optional ``PGTESTBED_*`` overrides.
    TestbedRunner: Config in, ``TestbedRunResult`` out. Sequential and
        fail-fast.
    SCENARIOS: Registry of frozen ``ScenarioSpec`` entries, in run order.
    OpenShiftClient / ContainerRuntime: subprocess wrappers for ``oc`` and
        ``docker``.
    poll_until(): Retry a check on a fixed interval within a budget.

Architecture::

    ┌──────────────────────────────────────────────────────────────┐
    │  cli (typer)  →  TestbedRunner  →  scenarios                 │
    ├──────────────────────────────────────────────────────────────┤
    │  Deployer            DatabaseProbe           LogCollector    │
    ├──────────────────────────────────────────────────────────────┤
    │  OpenShiftClient (oc)   ContainerRuntime (docker)   poller   │
    └──────────────────────────────────────────────────────────────┘

Example:
    >>> from pgtestbed import TestbedConfig
    >>> config = TestbedConfig(image_name="centos/postgresql-96-centos7", version="9.6", os="centos7")
    >>> config.legacy_image
    'docker.io/centos/postgresql-96-centos7'
"""

__version__ = "0.1.0"

from pgtestbed.config import TestbedConfig
from pgtestbed.errors import (
    ConfigError,
    PlatformCommandError,
    ReadinessTimeoutError,
    ScenarioAssertionError,
    TestbedError,
)
from pgtestbed.poller import poll_until
from pgtestbed.results import CheckResult, OverallStatus, ScenarioResult, TestbedRunResult
from pgtestbed.runner import TestbedRunner
from pgtestbed.scenarios import SCENARIOS, ScenarioSpec, get_scenario

__all__ = [
    "__version__",
    # Config
    "TestbedConfig",
    # Errors
    "TestbedError",
    "ConfigError",
    "PlatformCommandError",
    "ReadinessTimeoutError",
    "ScenarioAssertionError",
    # Results
    "OverallStatus",
    "CheckResult",
    "ScenarioResult",
    "TestbedRunResult",
    # Scenarios
    "SCENARIOS",
    "ScenarioSpec",
    "get_scenario",
    # Orchestration
    "TestbedRunner",
    "poll_until",
]

"""The end-to-end scenarios and their registry.

Each scenario is a plain function taking a ``ScenarioContext`` and running
a fixed sequence inside a project the runner has already created:

    DEPLOYED → READY → VERIFIED → [MUTATED → READY → VERIFIED]*

Any step that cannot complete raises a ``TestbedError``; verification steps
go through ``ScenarioContext.verify()``, which records a ``CheckResult``
and raises ``ScenarioAssertionError`` when the outcome is not the expected
one. ``verify(..., expect_failure=True)`` inverts a check: it passes only
when the probe fails (data gone after an ephemeral redeploy, old password
rejected after rotation).

Scenarios:
    pure_image               raw image via ``oc new-app``, readiness only
    template                 ephemeral template, readiness only
    ephemeral_redeploy       data is lost after a forced redeploy
    persistent_redeploy      data survives a forced redeploy
    persistent_pod_recreate  data survives deleting the running pod
    version_update           data survives an in-place image upgrade
    replication              master/slave propagation, credential rotation,
                             slave redeploy and scale-out
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from pgtestbed.cluster import OpenShiftClient
from pgtestbed.config import TestbedConfig
from pgtestbed.deployer import Deployer
from pgtestbed.errors import ScenarioAssertionError
from pgtestbed.logging import get_logger
from pgtestbed.probe import DatabaseCredentials, DatabaseProbe
from pgtestbed.results import CheckResult, ScenarioResult

logger = get_logger(__name__)

ADMIN_PASSWORD = "test"
TEMPLATE_CREDENTIALS = DatabaseCredentials(user="testu", password="testp", database="testdb")
REPLICATION_CREDENTIALS = DatabaseCredentials(user="user", password="userpass", database="userdb")
REPLICATION_MASTER_USER = "master"
REPLICATION_MASTER_PASSWORD = "masterpass"
MASTER_SERVICE = "postgresql-master"
SLAVE_SERVICE = "postgresql-slave"
ROTATED_PASSWORD_SUFFIX = "-rotated"
SCALED_SLAVES = 2


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


@dataclass
class ScenarioContext:
    """Everything a scenario body needs, bound to one project."""

    config: TestbedConfig
    cluster: OpenShiftClient
    deployer: Deployer
    probe: DatabaseProbe
    project: str
    result: ScenarioResult

    def verify(
        self,
        name: str,
        check: Callable[[], bool],
        *,
        expect_failure: bool = False,
        detail: str = "",
    ) -> None:
        """Run ``check`` and record it; raise if it did not go as expected."""
        started = time.monotonic()
        outcome = bool(check())
        passed = outcome != expect_failure
        self.result.checks.append(
            CheckResult(
                name=name,
                passed=passed,
                expected_failure=expect_failure,
                detail=detail,
                duration_seconds=round(time.monotonic() - started, 3),
            )
        )
        logger.info("check.done", check=name, passed=passed, expected_failure=expect_failure)
        if not passed:
            if expect_failure:
                message = f"{name}: expected the check to fail but it succeeded"
            else:
                message = f"{name}: check failed"
            if detail:
                message = f"{message} ({detail})"
            raise ScenarioAssertionError(message).with_context(project=self.project)

    # -- helpers shared by several scenarios ---------------------------

    def pod_ip(self, name: str) -> str:
        """IP of the single application pod of deployment ``name``."""
        return self.cluster.get_pod_ip(self.cluster.get_pod_name(name))

    def verify_connection(self, service: str, credentials: DatabaseCredentials, label: str = "") -> None:
        """The service must accept connections within ``ready_timeout`` of
        the last deployment or mutation, including the time spent waiting
        for the pod."""
        name = f"{service} accepting connections"
        if label:
            name = f"{name} {label}"
        self.verify(
            name,
            lambda: self.probe.check_connection(
                service,
                credentials,
                timeout=self.config.ready_timeout,
                started_at=self.deployer.changed_at,
            ),
            detail=f"user={credentials.user}",
        )

    def verify_data(self, host: str, credentials: DatabaseCredentials, name: str) -> None:
        self.verify(
            name,
            lambda: self.probe.check_data(host, credentials, timeout=self.config.ready_timeout),
            detail=f"host={host}",
        )

    def verify_no_data(self, host: str, credentials: DatabaseCredentials, name: str) -> None:
        self.verify(
            name,
            lambda: self.probe.check_data(host, credentials, timeout=0),
            expect_failure=True,
            detail=f"host={host}",
        )


@dataclass(frozen=True)
class ScenarioSpec:
    """A registered scenario."""

    name: str
    """Short name used on the command line."""

    description: str

    storage: Literal["none", "ephemeral", "persistent"]
    """Kind of data directory the scenario deploys."""

    run: Callable[[ScenarioContext], None] = field(repr=False)

    templates: tuple[str, ...] = ()
    """``TestbedConfig`` fields naming the template files the scenario needs."""

    needs_legacy_image: bool = False


# ---------------------------------------------------------------------------
# Shared steps
# ---------------------------------------------------------------------------


def _template_params(ctx: ScenarioContext, credentials: DatabaseCredentials) -> dict[str, str]:
    return {
        "NAMESPACE": ctx.project,
        "POSTGRESQL_VERSION": ctx.config.version,
        "DATABASE_SERVICE_NAME": ctx.config.service_name,
        "POSTGRESQL_USER": credentials.user,
        "POSTGRESQL_PASSWORD": credentials.password,
        "POSTGRESQL_DATABASE": credentials.database,
    }


def _deploy_template(
    ctx: ScenarioContext,
    template,
    source_image: str | None = None,
    pull: bool = False,
) -> str:
    """Upload an image as ``postgresql:<VERSION>``, instantiate ``template``
    and wait until the service accepts connections. Returns the service name."""
    config = ctx.config
    service = config.service_name
    ctx.deployer.upload_image(source_image or config.image_name, f"postgresql:{config.version}", pull=pull)
    ctx.deployer.deploy_template(template, _template_params(ctx, TEMPLATE_CREDENTIALS))
    ctx.deployer.wait_ready(service)
    ctx.verify_connection(service, TEMPLATE_CREDENTIALS)
    return service


def _insert_and_verify(ctx: ScenarioContext, service: str) -> None:
    host = ctx.pod_ip(service)
    ctx.probe.insert_data(host, TEMPLATE_CREDENTIALS)
    ctx.verify_data(host, TEMPLATE_CREDENTIALS, "data present after insert")


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def run_pure_image(ctx: ScenarioContext) -> None:
    config = ctx.config
    service = config.service_name
    ctx.deployer.upload_image(config.image_name)
    ctx.deployer.deploy_pure_image(
        service,
        name=service,
        env={"POSTGRESQL_ADMIN_PASSWORD": ADMIN_PASSWORD},
    )
    ctx.deployer.wait_ready(service)
    admin = DatabaseCredentials(user="postgres", password=ADMIN_PASSWORD, database="postgres")
    ctx.verify_connection(service, admin)


def run_template(ctx: ScenarioContext) -> None:
    _deploy_template(ctx, ctx.config.ephemeral_template)


def run_ephemeral_redeploy(ctx: ScenarioContext) -> None:
    service = _deploy_template(ctx, ctx.config.ephemeral_template)
    _insert_and_verify(ctx, service)

    ctx.deployer.redeploy(service)
    ctx.verify_connection(service, TEMPLATE_CREDENTIALS, "after redeploy")
    ctx.verify_no_data(ctx.pod_ip(service), TEMPLATE_CREDENTIALS, "data lost after redeploy")


def run_persistent_redeploy(ctx: ScenarioContext) -> None:
    service = _deploy_template(ctx, ctx.config.persistent_template)
    _insert_and_verify(ctx, service)

    ctx.deployer.redeploy(service)
    ctx.verify_connection(service, TEMPLATE_CREDENTIALS, "after redeploy")
    ctx.verify_data(ctx.pod_ip(service), TEMPLATE_CREDENTIALS, "data survived redeploy")


def run_persistent_pod_recreate(ctx: ScenarioContext) -> None:
    service = _deploy_template(ctx, ctx.config.persistent_template)
    _insert_and_verify(ctx, service)

    new_pod = ctx.deployer.recreate_pod(service)
    ctx.verify_connection(service, TEMPLATE_CREDENTIALS, "after pod recreation")
    ctx.verify_data(ctx.cluster.get_pod_ip(new_pod), TEMPLATE_CREDENTIALS, "data survived pod recreation")


def run_version_update(ctx: ScenarioContext) -> None:
    config = ctx.config
    imagestream = f"postgresql:{config.version}"
    service = _deploy_template(ctx, config.persistent_template, source_image=config.legacy_image, pull=True)
    _insert_and_verify(ctx, service)

    ctx.deployer.replace_image(config.image_name, imagestream, dc=service)
    ctx.verify_connection(service, TEMPLATE_CREDENTIALS, "after update")
    ctx.verify_data(ctx.pod_ip(service), TEMPLATE_CREDENTIALS, "data survived version update")


def run_replication(ctx: ScenarioContext) -> None:
    config = ctx.config
    credentials = REPLICATION_CREDENTIALS
    image = ctx.deployer.upload_image(config.image_name, f"postgresql:{config.version}")
    ctx.deployer.deploy_template(
        config.replication_template,
        {
            "POSTGRESQL_MASTER_SERVICE_NAME": MASTER_SERVICE,
            "POSTGRESQL_SLAVE_SERVICE_NAME": SLAVE_SERVICE,
            "POSTGRESQL_MASTER_USER": REPLICATION_MASTER_USER,
            "POSTGRESQL_MASTER_PASSWORD": REPLICATION_MASTER_PASSWORD,
            "POSTGRESQL_USER": credentials.user,
            "POSTGRESQL_PASSWORD": credentials.password,
            "POSTGRESQL_DATABASE": credentials.database,
            "POSTGRESQL_IMAGE": image,
        },
    )
    ctx.deployer.wait_ready(MASTER_SERVICE)
    ctx.deployer.wait_ready(SLAVE_SERVICE)
    ctx.verify_connection(MASTER_SERVICE, credentials)
    ctx.verify_connection(SLAVE_SERVICE, credentials)

    # propagation
    ctx.probe.insert_data(ctx.pod_ip(MASTER_SERVICE), credentials)
    ctx.verify_data(ctx.pod_ip(SLAVE_SERVICE), credentials, "data replicated to slave")

    # credential rotation on both roles
    rotated = credentials.with_password(credentials.password + ROTATED_PASSWORD_SUFFIX)
    for dc in (MASTER_SERVICE, SLAVE_SERVICE):
        ctx.deployer.set_env(dc, {"POSTGRESQL_PASSWORD": rotated.password})
    ctx.verify_connection(MASTER_SERVICE, rotated, "after password change")
    ctx.verify_connection(SLAVE_SERVICE, rotated, "after password change")
    master_ip = ctx.pod_ip(MASTER_SERVICE)
    ctx.verify_data(master_ip, rotated, "master readable with new password")
    ctx.verify_no_data(master_ip, credentials, "master rejects old password")
    ctx.verify_data(ctx.pod_ip(SLAVE_SERVICE), rotated, "slave readable with new password")

    # slave redeploy
    ctx.deployer.redeploy(SLAVE_SERVICE)
    ctx.verify_connection(SLAVE_SERVICE, rotated, "after slave redeploy")
    ctx.verify_data(ctx.pod_ip(SLAVE_SERVICE), rotated, "data on redeployed slave")

    # scale-out, each replica checked in turn
    for pod in ctx.deployer.scale(SLAVE_SERVICE, SCALED_SLAVES):
        ctx.verify_data(ctx.cluster.get_pod_ip(pod), rotated, f"data on slave pod {pod}")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

PURE_IMAGE = ScenarioSpec(
    name="pure_image",
    description="Deploy the raw image without a template; service accepts connections",
    storage="none",
    run=run_pure_image,
)

TEMPLATE = ScenarioSpec(
    name="template",
    description="Deploy via the ephemeral template; service accepts connections",
    storage="ephemeral",
    run=run_template,
    templates=("ephemeral_template",),
)

EPHEMERAL_REDEPLOY = ScenarioSpec(
    name="ephemeral_redeploy",
    description="Insert data, force a redeploy, data must be gone",
    storage="ephemeral",
    run=run_ephemeral_redeploy,
    templates=("ephemeral_template",),
)

PERSISTENT_REDEPLOY = ScenarioSpec(
    name="persistent_redeploy",
    description="Insert data, force a redeploy, data must survive",
    storage="persistent",
    run=run_persistent_redeploy,
    templates=("persistent_template",),
)

PERSISTENT_POD_RECREATE = ScenarioSpec(
    name="persistent_pod_recreate",
    description="Insert data, delete the running pod, data must survive in the replacement",
    storage="persistent",
    run=run_persistent_pod_recreate,
    templates=("persistent_template",),
)

VERSION_UPDATE = ScenarioSpec(
    name="version_update",
    description="Deploy the published image, insert data, upgrade to the candidate, data must survive",
    storage="persistent",
    run=run_version_update,
    templates=("persistent_template",),
    needs_legacy_image=True,
)

REPLICATION = ScenarioSpec(
    name="replication",
    description="Master/slave: propagation, password rotation, slave redeploy, scale to 2 slaves",
    storage="persistent",
    run=run_replication,
    templates=("replication_template",),
)

SCENARIOS: dict[str, ScenarioSpec] = {
    s.name: s
    for s in (
        PURE_IMAGE,
        TEMPLATE,
        EPHEMERAL_REDEPLOY,
        PERSISTENT_REDEPLOY,
        PERSISTENT_POD_RECREATE,
        VERSION_UPDATE,
        REPLICATION,
    )
}


def get_scenario(name: str) -> ScenarioSpec:
    """Look up a scenario by name.

    Raises
    ------
    ValueError
        If the name is not registered.
    """
    key = name.lower().strip().replace("-", "_")
    if key not in SCENARIOS:
        available = ", ".join(SCENARIOS)
        raise ValueError(f"Unknown scenario: {name!r}. Available: {available}")
    return SCENARIOS[key]


def get_scenarios(names: list[str]) -> list[ScenarioSpec]:
    """Resolve names in order; ``["all"]`` selects every scenario."""
    if names == ["all"]:
        return list(SCENARIOS.values())
    return [get_scenario(n) for n in names]

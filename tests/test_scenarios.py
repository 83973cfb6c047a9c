"""Tests for the scenario bodies and registry.

Deployer, cluster and probe are MagicMocks, so most tests only look at the
sequence of calls a scenario makes and at the checks it records. The
readiness budget tests use a real Deployer and DatabaseProbe on a fake
clock.
"""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, call

import pytest

from pgtestbed.config import DEFAULT_SCENARIOS
from pgtestbed.deployer import Deployer
from pgtestbed.errors import ScenarioAssertionError
from pgtestbed.probe import DatabaseCredentials, DatabaseProbe
from pgtestbed.results import ScenarioResult
from pgtestbed.scenarios import (
    MASTER_SERVICE,
    SCENARIOS,
    SLAVE_SERVICE,
    ScenarioContext,
    get_scenario,
    get_scenarios,
    run_ephemeral_redeploy,
    run_persistent_pod_recreate,
    run_persistent_redeploy,
    run_pure_image,
    run_replication,
    run_template,
    run_version_update,
)

SERVICE = "postgresql-96-centos7"


def _make_ctx(config) -> ScenarioContext:
    cluster = MagicMock()
    cluster.get_pod_name.side_effect = lambda prefix: f"{prefix}-1-abcde"
    cluster.get_pod_ip.return_value = "10.128.0.12"
    deployer = MagicMock()
    deployer.upload_image.return_value = "172.30.1.1:5000/pgtest-x/postgresql:9.6"
    probe = MagicMock()
    probe.check_connection.return_value = True
    probe.check_data.return_value = True
    return ScenarioContext(
        config=config,
        cluster=cluster,
        deployer=deployer,
        probe=probe,
        project="pgtest-x",
        result=ScenarioResult(name="x"),
    )


@pytest.fixture
def ctx(config):
    return _make_ctx(config)


# ===========================================================================
# Registry
# ===========================================================================


class TestRegistry:
    def test_run_order(self):
        assert list(SCENARIOS) == DEFAULT_SCENARIOS

    def test_storage_kinds(self):
        assert SCENARIOS["pure_image"].storage == "none"
        assert SCENARIOS["ephemeral_redeploy"].storage == "ephemeral"
        assert SCENARIOS["persistent_pod_recreate"].storage == "persistent"

    def test_templates_name_config_fields(self, config):
        for spec in SCENARIOS.values():
            for field_name in spec.templates:
                assert hasattr(config, field_name)

    def test_only_version_update_needs_legacy_image(self):
        assert [s.name for s in SCENARIOS.values() if s.needs_legacy_image] == ["version_update"]

    def test_get_scenario_normalizes(self):
        assert get_scenario("Persistent-Redeploy").name == "persistent_redeploy"

    def test_get_scenario_unknown(self):
        with pytest.raises(ValueError, match="Unknown scenario"):
            get_scenario("galera")

    def test_get_scenarios_all(self):
        assert [s.name for s in get_scenarios(["all"])] == DEFAULT_SCENARIOS

    def test_get_scenarios_keeps_order(self):
        assert [s.name for s in get_scenarios(["replication", "template"])] == ["replication", "template"]


# ===========================================================================
# ScenarioContext.verify
# ===========================================================================


class TestVerify:
    def test_passing_check_recorded(self, ctx):
        ctx.verify("accepting connections", lambda: True)
        check = ctx.result.checks[0]
        assert check.name == "accepting connections"
        assert check.passed is True
        assert check.expected_failure is False

    def test_failing_check_raises_and_is_recorded(self, ctx):
        with pytest.raises(ScenarioAssertionError, match="data present: check failed"):
            ctx.verify("data present", lambda: False)
        assert ctx.result.checks[0].passed is False

    def test_expected_failure_passes_when_check_fails(self, ctx):
        ctx.verify("data lost", lambda: False, expect_failure=True)
        check = ctx.result.checks[0]
        assert check.passed is True
        assert check.expected_failure is True

    def test_expected_failure_raises_when_check_succeeds(self, ctx):
        with pytest.raises(ScenarioAssertionError, match="expected the check to fail") as exc_info:
            ctx.verify("data lost", lambda: True, expect_failure=True)
        assert exc_info.value.context.project == "pgtest-x"


# ===========================================================================
# Scenarios
# ===========================================================================


class TestPureImage:
    def test_sequence(self, ctx):
        run_pure_image(ctx)

        ctx.deployer.upload_image.assert_called_once_with("centos/postgresql-96-centos7")
        ctx.deployer.deploy_pure_image.assert_called_once_with(
            SERVICE, name=SERVICE, env={"POSTGRESQL_ADMIN_PASSWORD": "test"}
        )
        ctx.deployer.wait_ready.assert_called_once_with(SERVICE)
        service, creds = ctx.probe.check_connection.call_args.args
        assert service == SERVICE
        assert creds == DatabaseCredentials(user="postgres", password="test", database="postgres")
        assert [c.passed for c in ctx.result.checks] == [True]

    def test_not_ready_fails(self, ctx):
        ctx.probe.check_connection.return_value = False
        with pytest.raises(ScenarioAssertionError):
            run_pure_image(ctx)


class TestTemplate:
    def test_sequence(self, ctx, config):
        run_template(ctx)

        ctx.deployer.upload_image.assert_called_once_with(
            "centos/postgresql-96-centos7", "postgresql:9.6", pull=False
        )
        template, params = ctx.deployer.deploy_template.call_args.args
        assert template == config.ephemeral_template
        assert params == {
            "NAMESPACE": "pgtest-x",
            "POSTGRESQL_VERSION": "9.6",
            "DATABASE_SERVICE_NAME": SERVICE,
            "POSTGRESQL_USER": "testu",
            "POSTGRESQL_PASSWORD": "testp",
            "POSTGRESQL_DATABASE": "testdb",
        }
        ctx.deployer.wait_ready.assert_called_once_with(SERVICE)
        ctx.probe.insert_data.assert_not_called()


class TestReadinessBudget:
    """Pod readiness and connection checks share one budget from deployment."""

    @pytest.fixture
    def timed_ctx(self, config, fake_clock):
        config = config.model_copy(update={"ready_timeout": 60.0, "poll_interval": 3.0})
        cluster = MagicMock()
        cluster.current_project.return_value = "pgtest-x"
        runtime = MagicMock()
        deployer = Deployer(
            cluster,
            runtime,
            registry="172.30.1.1:5000",
            interval=3.0,
            timeout=60.0,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )
        probe = DatabaseProbe(
            runtime, cluster, config.image_name, interval=3.0, clock=fake_clock, sleep=fake_clock.sleep
        )
        return ScenarioContext(
            config=config,
            cluster=cluster,
            deployer=deployer,
            probe=probe,
            project="pgtest-x",
            result=ScenarioResult(name="template"),
        )

    @staticmethod
    def _ready_at(ctx, fake_clock, pod: float, connections: float) -> None:
        ctx.cluster.is_pod_ready.side_effect = lambda name: fake_clock.now >= pod
        ctx.probe.runtime.run_ephemeral.side_effect = lambda *args, **kwargs: subprocess.CompletedProcess(
            args=[],
            returncode=0 if fake_clock.now >= connections else 2,
            stdout="accepting connections" if fake_clock.now >= connections else "no response",
            stderr="",
        )

    def test_connections_after_budget_fail(self, timed_ctx, fake_clock):
        self._ready_at(timed_ctx, fake_clock, pod=57.0, connections=110.0)

        with pytest.raises(ScenarioAssertionError, match="accepting connections"):
            run_template(timed_ctx)
        assert fake_clock.now == 60.0
        assert [c.passed for c in timed_ctx.result.checks] == [False]

    def test_connections_within_budget_pass(self, timed_ctx, fake_clock):
        self._ready_at(timed_ctx, fake_clock, pod=57.0, connections=59.0)

        run_template(timed_ctx)
        assert fake_clock.now == 60.0
        assert [c.passed for c in timed_ctx.result.checks] == [True]


class TestEphemeralRedeploy:
    def test_data_lost(self, ctx):
        ctx.probe.check_data.side_effect = [True, False]

        run_ephemeral_redeploy(ctx)

        ctx.probe.insert_data.assert_called_once()
        ctx.deployer.redeploy.assert_called_once_with(SERVICE)
        assert ctx.probe.check_data.call_args.kwargs["timeout"] == 0
        last = ctx.result.checks[-1]
        assert last.name == "data lost after redeploy"
        assert last.expected_failure is True
        assert last.passed is True

    def test_data_still_present_fails(self, ctx):
        ctx.probe.check_data.return_value = True
        with pytest.raises(ScenarioAssertionError, match="data lost after redeploy"):
            run_ephemeral_redeploy(ctx)


class TestPersistentRedeploy:
    def test_data_survives(self, ctx, config):
        run_persistent_redeploy(ctx)

        assert ctx.deployer.deploy_template.call_args.args[0] == config.persistent_template
        ctx.deployer.redeploy.assert_called_once_with(SERVICE)
        assert ctx.result.checks[-1].name == "data survived redeploy"
        assert all(c.passed for c in ctx.result.checks)

    def test_data_lost_fails(self, ctx):
        ctx.probe.check_data.side_effect = [True, False]
        with pytest.raises(ScenarioAssertionError, match="data survived redeploy"):
            run_persistent_redeploy(ctx)


class TestPersistentPodRecreate:
    def test_data_survives_in_new_pod(self, ctx):
        ctx.deployer.recreate_pod.return_value = f"{SERVICE}-1-new"

        run_persistent_pod_recreate(ctx)

        ctx.deployer.recreate_pod.assert_called_once_with(SERVICE)
        ctx.deployer.redeploy.assert_not_called()
        ctx.cluster.get_pod_ip.assert_called_with(f"{SERVICE}-1-new")
        assert ctx.result.checks[-1].name == "data survived pod recreation"


class TestVersionUpdate:
    def test_upgrades_from_published_image(self, ctx, config):
        run_version_update(ctx)

        ctx.deployer.upload_image.assert_called_once_with(
            "docker.io/centos/postgresql-96-centos7", "postgresql:9.6", pull=True
        )
        assert ctx.deployer.deploy_template.call_args.args[0] == config.persistent_template
        ctx.deployer.replace_image.assert_called_once_with(
            "centos/postgresql-96-centos7", "postgresql:9.6", dc=SERVICE
        )
        assert ctx.result.checks[-1].name == "data survived version update"


class TestReplication:
    @pytest.fixture
    def ctx(self, config):
        context = _make_ctx(config.model_copy(update={"ready_timeout": 60.0}))
        # only the zero-retry check with the old password is rejected
        context.probe.check_data.side_effect = lambda host, credentials, timeout: timeout != 0
        context.deployer.scale.return_value = ["postgresql-slave-1-a", "postgresql-slave-1-b"]
        return context

    def test_full_sequence(self, ctx, config):
        run_replication(ctx)

        template, params = ctx.deployer.deploy_template.call_args.args
        assert template == config.replication_template
        assert params["POSTGRESQL_MASTER_SERVICE_NAME"] == MASTER_SERVICE
        assert params["POSTGRESQL_SLAVE_SERVICE_NAME"] == SLAVE_SERVICE
        assert params["POSTGRESQL_IMAGE"] == "172.30.1.1:5000/pgtest-x/postgresql:9.6"

        ctx.probe.insert_data.assert_called_once()
        assert ctx.deployer.set_env.call_args_list == [
            call(MASTER_SERVICE, {"POSTGRESQL_PASSWORD": "userpass-rotated"}),
            call(SLAVE_SERVICE, {"POSTGRESQL_PASSWORD": "userpass-rotated"}),
        ]
        ctx.deployer.redeploy.assert_called_once_with(SLAVE_SERVICE)
        ctx.deployer.scale.assert_called_once_with(SLAVE_SERVICE, 2)
        ctx.cluster.get_pod_ip.assert_any_call("postgresql-slave-1-a")
        ctx.cluster.get_pod_ip.assert_any_call("postgresql-slave-1-b")

        names = [c.name for c in ctx.result.checks]
        assert "data replicated to slave" in names
        assert names[-2:] == ["data on slave pod postgresql-slave-1-a", "data on slave pod postgresql-slave-1-b"]
        rejected = next(c for c in ctx.result.checks if c.name == "master rejects old password")
        assert rejected.expected_failure is True
        assert rejected.passed is True

    def test_new_password_used_after_rotation(self, ctx):
        run_replication(ctx)

        passwords = [c.args[1].password for c in ctx.probe.check_connection.call_args_list]
        assert passwords == ["userpass", "userpass", "userpass-rotated", "userpass-rotated", "userpass-rotated"]

    def test_old_password_still_accepted_fails(self, ctx):
        ctx.probe.check_data.side_effect = None
        ctx.probe.check_data.return_value = True
        with pytest.raises(ScenarioAssertionError, match="master rejects old password"):
            run_replication(ctx)

    def test_replication_lag_beyond_budget_fails(self, ctx):
        ctx.probe.check_data.side_effect = None
        ctx.probe.check_data.return_value = False
        with pytest.raises(ScenarioAssertionError, match="data replicated to slave"):
            run_replication(ctx)
        ctx.deployer.set_env.assert_not_called()

"""Tests for DatabaseProbe and DatabaseCredentials."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock

import pytest

from pgtestbed.errors import ProbeError
from pgtestbed.probe import INSERT_SQL, SELECT_SQL, DatabaseCredentials, DatabaseProbe

CREDS = DatabaseCredentials(user="testu", password="testp", database="testdb")


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def runtime():
    return MagicMock()


@pytest.fixture
def cluster():
    mock = MagicMock()
    mock.get_service_ip.return_value = "172.30.44.5"
    return mock


@pytest.fixture
def probe(runtime, cluster):
    return DatabaseProbe(runtime, cluster, "centos/postgresql-96-centos7", interval=0.01)


class TestDatabaseCredentials:
    @pytest.mark.parametrize("field", ["user", "password", "database"])
    def test_empty_field_rejected(self, field):
        values = {"user": "u", "password": "p", "database": "d", field: ""}
        with pytest.raises(ValueError, match=field):
            DatabaseCredentials(**values)

    def test_with_password(self):
        rotated = CREDS.with_password("new")
        assert rotated.password == "new"
        assert rotated.user == "testu"
        assert CREDS.password == "testp"

    def test_repr_masks_password(self):
        assert "testp" not in repr(CREDS)


class TestReadiness:
    def test_accepting_connections(self, probe, runtime):
        runtime.run_ephemeral.return_value = _completed("172.30.44.5:5432 - accepting connections\n")
        assert probe.is_accepting_connections("172.30.44.5", CREDS) is True

        image, args = runtime.run_ephemeral.call_args.args
        assert image == "centos/postgresql-96-centos7"
        assert args == ["pg_isready", "-t", "15", "-h", "172.30.44.5", "-U", "testu", "-d", "postgres"]
        assert runtime.run_ephemeral.call_args.kwargs["env"] == {"PGPASSWORD": "testp"}

    def test_not_accepting(self, probe, runtime):
        runtime.run_ephemeral.return_value = _completed("172.30.44.5:5432 - no response", returncode=2)
        assert probe.is_accepting_connections("172.30.44.5", CREDS) is False

    def test_check_connection_uses_service_ip(self, probe, runtime, cluster):
        runtime.run_ephemeral.return_value = _completed("accepting connections")
        assert probe.check_connection("postgresql", CREDS, timeout=0) is True
        cluster.get_service_ip.assert_called_once_with("postgresql")
        assert "172.30.44.5" in runtime.run_ephemeral.call_args.args[1]

    def test_check_connection_gives_up(self, probe, runtime):
        runtime.run_ephemeral.return_value = _completed("no response", returncode=2)
        assert probe.check_connection("postgresql", CREDS, timeout=0) is False
        assert runtime.run_ephemeral.call_count == 1

    def test_check_connection_budget_from_started_at(self, runtime, cluster, fake_clock):
        probe = DatabaseProbe(
            runtime, cluster, "centos/postgresql-96-centos7", interval=3.0, clock=fake_clock, sleep=fake_clock.sleep
        )
        runtime.run_ephemeral.return_value = _completed("no response", returncode=2)
        fake_clock.now = 59.0

        assert probe.check_connection("postgresql", CREDS, timeout=60.0, started_at=0.0) is False
        assert runtime.run_ephemeral.call_count == 2
        assert fake_clock.now == 62.0


class TestData:
    def test_insert(self, probe, runtime):
        runtime.run_ephemeral.return_value = _completed("INSERT 0 1")
        probe.insert_data("10.128.0.12", CREDS)

        args = runtime.run_ephemeral.call_args.args[1]
        assert args == ["psql", "-h", "10.128.0.12", "-U", "testu", "-d", "testdb", "-c", INSERT_SQL]
        assert "testp" not in args

    def test_insert_failure_raises(self, probe, runtime):
        runtime.run_ephemeral.return_value = _completed(returncode=2, stderr="password authentication failed")
        with pytest.raises(ProbeError, match="password authentication failed"):
            probe.insert_data("10.128.0.12", CREDS)

    def test_check_data_present(self, probe, runtime):
        runtime.run_ephemeral.return_value = _completed("42\n")
        assert probe.check_data("10.128.0.12", CREDS, timeout=0) is True

        args = runtime.run_ephemeral.call_args.args[1]
        assert "--tuples-only" in args
        assert args[-1] == SELECT_SQL

    def test_check_data_absent_checks_once(self, probe, runtime):
        runtime.run_ephemeral.return_value = _completed(returncode=1, stderr='relation "testing" does not exist')
        assert probe.check_data("10.128.0.12", CREDS, timeout=0) is False
        assert runtime.run_ephemeral.call_count == 1

    def test_check_data_requires_exact_value(self, probe, runtime):
        runtime.run_ephemeral.return_value = _completed("42\n42\n")
        assert probe.check_data("10.128.0.12", CREDS, timeout=0) is False

    def test_check_data_retries(self, probe, runtime):
        runtime.run_ephemeral.side_effect = [_completed(returncode=2), _completed("42")]
        assert probe.check_data("10.128.0.12", CREDS, timeout=5) is True
        assert runtime.run_ephemeral.call_count == 2

    def test_query_value_failure_is_none(self, probe, runtime):
        runtime.run_ephemeral.return_value = _completed(returncode=2)
        assert probe.query_value("10.128.0.12", CREDS) is None

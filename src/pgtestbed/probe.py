"""Database probe for pgtestbed.

Talks to the deployed PostgreSQL through a throwaway client container
started from the image under test, so the check needs nothing on the
host but a container runtime. Three operations:

- ``check_connection()``: ``pg_isready`` against the *service* address,
  retried until the output says ``accepting connections``.
- ``insert_data()``: creates table ``testing`` and inserts ``42``. Runs
  once; a failure raises ``ProbeError`` because the insert is set-up,
  not the thing under test.
- ``check_data()``: ``SELECT * FROM testing`` must return exactly ``42``.
  Retried within ``timeout``; ``timeout=0`` checks once, which is how
  callers assert that data is gone.

The password travels as ``PGPASSWORD`` in the client container's
environment; SQL is passed as a single argv element to ``psql -c``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from pgtestbed.cluster import OpenShiftClient
from pgtestbed.container import ContainerRuntime
from pgtestbed.errors import ProbeError
from pgtestbed.logging import get_logger
from pgtestbed.poller import DEFAULT_INTERVAL, DEFAULT_TIMEOUT, poll_until

logger = get_logger(__name__)

TEST_TABLE = "testing"
TEST_VALUE = "42"
READY_MARKER = "accepting connections"

INSERT_SQL = f"CREATE TABLE {TEST_TABLE} (a integer); INSERT INTO {TEST_TABLE} VALUES ({TEST_VALUE});"
SELECT_SQL = f"SELECT * FROM {TEST_TABLE};"


@dataclass(frozen=True)
class DatabaseCredentials:
    """User, password and database name for one connection."""

    user: str
    password: str
    database: str

    def __post_init__(self) -> None:
        for name in ("user", "password", "database"):
            if not getattr(self, name):
                raise ValueError(f"DatabaseCredentials.{name} must not be empty")

    def with_password(self, password: str) -> DatabaseCredentials:
        return replace(self, password=password)

    def __repr__(self) -> str:
        return f"DatabaseCredentials(user={self.user!r}, password='***', database={self.database!r})"


class DatabaseProbe:
    """Runs ``pg_isready`` / ``psql`` from a client container.

    Parameters
    ----------
    runtime
        Container runtime used to start the client.
    cluster
        Used to resolve service addresses.
    client_image
        Image carrying the PostgreSQL client tools (the image under test).
    interval
        Seconds between retries.
    clock, sleep
        Time source and sleep used by the retries.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        cluster: OpenShiftClient,
        client_image: str,
        interval: float = DEFAULT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runtime = runtime
        self.cluster = cluster
        self.client_image = client_image
        self.interval = interval
        self.clock = clock
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def is_accepting_connections(self, host: str, credentials: DatabaseCredentials) -> bool:
        """Single ``pg_isready`` attempt."""
        result = self.runtime.run_ephemeral(
            self.client_image,
            ["pg_isready", "-t", "15", "-h", host, "-U", credentials.user, "-d", "postgres"],
            env={"PGPASSWORD": credentials.password},
        )
        return READY_MARKER in (result.stdout + result.stderr)

    def check_connection(
        self,
        service: str,
        credentials: DatabaseCredentials,
        timeout: float = DEFAULT_TIMEOUT,
        started_at: float | None = None,
    ) -> bool:
        """Wait for ``service`` to accept connections.

        ``started_at`` lets the wait share a budget that began earlier on
        the probe's clock, such as the moment of deployment.
        """
        host = self.cluster.get_service_ip(service)
        logger.info("probe.connection", service=service, host=host, user=credentials.user)
        return poll_until(
            lambda: self.is_accepting_connections(host, credentials),
            interval=self.interval,
            timeout=timeout,
            description=f"service {service} accepting connections",
            started_at=started_at,
            clock=self.clock,
            sleep=self.sleep,
        )

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def insert_data(self, host: str, credentials: DatabaseCredentials) -> None:
        """Create the test table and insert the known row."""
        result = self._psql(host, credentials, INSERT_SQL)
        if result.returncode != 0:
            raise ProbeError(
                f"Inserting test data at {host} as {credentials.user} failed "
                f"(exit {result.returncode}): {result.stderr.strip()}"
            )
        logger.info("probe.inserted", host=host, table=TEST_TABLE)

    def query_value(self, host: str, credentials: DatabaseCredentials) -> str | None:
        """Rows of the test table as text, or ``None`` if the query failed."""
        result = self._psql(host, credentials, SELECT_SQL, tuples_only=True)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def check_data(
        self,
        host: str,
        credentials: DatabaseCredentials,
        timeout: float = DEFAULT_TIMEOUT,
        expected: str = TEST_VALUE,
    ) -> bool:
        """Wait until the test table at ``host`` holds exactly ``expected``."""
        found = poll_until(
            lambda: self.query_value(host, credentials) == expected,
            interval=self.interval,
            timeout=timeout,
            description=f"{TEST_TABLE} at {host} == {expected}",
            clock=self.clock,
            sleep=self.sleep,
        )
        logger.info("probe.data_checked", host=host, found=found, timeout=timeout)
        return found

    def _psql(self, host: str, credentials: DatabaseCredentials, sql: str, tuples_only: bool = False):
        args = ["psql", "-h", host, "-U", credentials.user, "-d", credentials.database]
        if tuples_only:
            args.extend(["--tuples-only", "--no-align"])
        args.extend(["-c", sql])
        return self.runtime.run_ephemeral(
            self.client_image,
            args,
            env={"PGPASSWORD": credentials.password},
        )

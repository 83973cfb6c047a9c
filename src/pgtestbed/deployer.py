"""Image and template deployment for pgtestbed.

``Deployer`` combines the cluster client and the container runtime into
the operations scenarios are written in: put an image into the project's
image stream, deploy it directly or from a template, and mutate the
deployment (redeploy, new env, scale, kill a pod) while waiting for the
resulting rollout to become ready.

Every mutating operation waits. A rollout that does not become ready within
its budget raises ``ReadinessTimeoutError``; the poller underneath only
reports ``False`` and the decision that this is fatal is made here.

Readiness budgets run from the moment the last deployment or mutation was
issued (``changed_at``), not from the start of each wait, so consecutive
waits after one change share a single budget.

Example::

    deployer = Deployer(cluster, runtime, registry="172.30.1.1:5000")
    deployer.upload_image("centos/postgresql-96-centos7", "postgresql:9.6")
    deployer.deploy_template(
        "test/postgresql-persistent-template.json",
        {"DATABASE_SERVICE_NAME": "postgresql", "POSTGRESQL_USER": "testu"},
    )
    deployer.wait_ready("postgresql")
    deployer.redeploy("postgresql")
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path

from pgtestbed.cluster import OpenShiftClient
from pgtestbed.config import image_basename
from pgtestbed.container import ContainerRuntime
from pgtestbed.errors import ReadinessTimeoutError
from pgtestbed.logging import get_logger
from pgtestbed.poller import DEFAULT_INTERVAL, DEFAULT_TIMEOUT, poll_until

logger = get_logger(__name__)


class Deployer:
    """Deploys and mutates the database under test in the current project.

    Parameters
    ----------
    cluster
        ``oc`` wrapper.
    runtime
        ``docker`` wrapper used to push images.
    registry
        Address of the cluster's integrated registry.
    interval, timeout
        Poll interval and default readiness budget in seconds.
    clock, sleep
        Time source and sleep used by every poll.
    """

    def __init__(
        self,
        cluster: OpenShiftClient,
        runtime: ContainerRuntime,
        registry: str,
        interval: float = DEFAULT_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cluster = cluster
        self.runtime = runtime
        self.registry = registry
        self.interval = interval
        self.timeout = timeout
        self.clock = clock
        self.sleep = sleep
        self.changed_at: float | None = None
        """``clock`` time of the last deployment or mutation."""

    def _changed(self) -> None:
        self.changed_at = self.clock()

    def _poll(self, check: Callable[[], object], description: str, budget: float, started_at: float | None) -> bool:
        return poll_until(
            check,
            interval=self.interval,
            timeout=budget,
            description=description,
            started_at=self.changed_at if started_at is None else started_at,
            clock=self.clock,
            sleep=self.sleep,
        )

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def upload_image(self, source: str, imagestream: str | None = None, pull: bool = False) -> str:
        """Push ``source`` into the current project as ``imagestream``.

        ``imagestream`` is ``name:tag``; it defaults to the image name
        without namespace and tag, tagged ``latest``. With ``pull`` the
        source is fetched first unless it is already present locally.
        Returns the pushed reference.
        """
        imagestream = imagestream or f"{image_basename(source)}:latest"
        if pull:
            self.runtime.ensure_image(source)
        project = self.cluster.current_project()
        target = f"{self.registry}/{project}/{imagestream}"

        self.runtime.login(self.registry, self.cluster.whoami(), self.cluster.whoami_token())
        self.runtime.tag(source, target)
        self.runtime.push(target)
        logger.info("image.uploaded", source=source, imagestream=imagestream)
        return target

    # ------------------------------------------------------------------
    # Deploying
    # ------------------------------------------------------------------

    def deploy_pure_image(self, imagestream: str, name: str, env: dict[str, str] | None = None) -> None:
        """Deploy an image stream directly, without a template."""
        self.cluster.new_app(imagestream, name=name, env=env)
        self._changed()

    def deploy_template(self, template: str | Path, params: dict[str, str]) -> None:
        """Instantiate ``template`` with ``params`` in the current project."""
        manifest = self.cluster.process_template(str(template), params)
        self.cluster.create_from_manifest(manifest)
        self._changed()
        logger.info("template.deployed", template=str(template), params=sorted(params))

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    def wait_ready(self, name: str, timeout: float | None = None, started_at: float | None = None) -> None:
        """Wait until a pod of deployment ``name`` is ready.

        The budget runs from ``started_at``, by default ``changed_at``.
        """
        budget = self.timeout if timeout is None else timeout
        ready = self._poll(lambda: self.cluster.is_pod_ready(name), f"pod {name} ready", budget, started_at)
        if not ready:
            raise ReadinessTimeoutError(f"pod {name}", budget)
        logger.info("pod.ready", name=name)

    def wait_rollout(
        self,
        dc: str,
        min_version: int = 1,
        timeout: float | None = None,
        started_at: float | None = None,
    ) -> None:
        """Wait until rollout ``min_version`` (or later) of ``dc`` is ready."""
        budget = self.timeout if timeout is None else timeout
        ready = self._poll(
            lambda: self.cluster.is_rc_ready(dc, min_version=min_version),
            f"rollout {dc} >= {min_version}",
            budget,
            started_at,
        )
        if not ready:
            raise ReadinessTimeoutError(f"rollout {min_version} of {dc}", budget)
        logger.info("rollout.ready", dc=dc, min_version=min_version)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def redeploy(self, dc: str, timeout: float | None = None) -> None:
        """Force a new rollout of ``dc`` and wait for it."""
        previous = self.cluster.get_latest_version(dc)
        self.cluster.rollout_latest(dc)
        self._changed()
        self.wait_rollout(dc, min_version=previous + 1, timeout=timeout)

    def set_env(self, dc: str, env: dict[str, str], timeout: float | None = None) -> None:
        """Change environment of ``dc``; the config-change trigger redeploys it."""
        previous = self.cluster.get_latest_version(dc)
        self.cluster.set_env(dc, env)
        self._changed()
        self.wait_rollout(dc, min_version=previous + 1, timeout=timeout)

    def replace_image(self, source: str, imagestream: str, dc: str, timeout: float | None = None) -> None:
        """Push ``source`` over ``imagestream``; the image-change trigger redeploys ``dc``."""
        previous = self.cluster.get_latest_version(dc)
        self.upload_image(source, imagestream)
        self._changed()
        self.wait_rollout(dc, min_version=previous + 1, timeout=timeout)

    def scale(self, dc: str, replicas: int, timeout: float | None = None) -> list[str]:
        """Scale ``dc`` and wait until exactly ``replicas`` pods are ready.

        Returns the pod names.
        """
        self.cluster.scale(dc, replicas)
        self._changed()
        budget = self.timeout if timeout is None else timeout
        ready = self._poll(
            lambda: self.cluster.is_rc_ready(dc) and len(self.cluster.get_pod_names(dc)) == replicas,
            f"{dc} scaled to {replicas}",
            budget,
            None,
        )
        if not ready:
            raise ReadinessTimeoutError(f"{replicas} replicas of {dc}", budget)
        return self.cluster.get_pod_names(dc)

    def recreate_pod(self, name: str, timeout: float | None = None) -> str:
        """Delete the running pod of ``name`` and wait for its replacement.

        Returns the name of the new pod.
        """
        old_pod = self.cluster.get_pod_name(name)
        self.cluster.delete_pod(old_pod)
        self._changed()
        budget = self.timeout if timeout is None else timeout
        replaced = self._poll(
            lambda: old_pod not in self.cluster.get_pod_names(name) and self.cluster.is_pod_ready(name),
            f"pod {old_pod} replaced",
            budget,
            None,
        )
        if not replaced:
            raise ReadinessTimeoutError(f"replacement for pod {old_pod}", budget)
        new_pod = self.cluster.get_pod_name(name)
        logger.info("pod.recreated", old_pod=old_pod, new_pod=new_pod)
        return new_pod

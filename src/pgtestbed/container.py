"""Container runtime access for pgtestbed.

Wraps the ``docker`` CLI (subprocess, no ``docker-py``). The harness needs
the runtime for two things:

- Pushing the image under test into the cluster's integrated registry
  (``login`` / ``tag`` / ``push``).
- Starting short-lived client containers (``docker run --rm``) that carry
  ``psql`` and ``pg_isready`` to the deployed database.

Key Concepts:
    ContainerRuntime: ``run_ephemeral()``, ``login()``, ``tag()``,
        ``push()``, ``pull()``, ``image_exists()``.
    ToolNotFoundError: Raised when ``docker`` is not on PATH.

Architecture Decisions:
    - subprocess, not docker-py: works with any runtime exposing a
      ``docker`` CLI (Docker, Podman's docker shim).
    - Secrets through the environment: ``run_ephemeral(env=...)`` forwards
      variables with ``--env NAME`` and passes the values via the
      subprocess environment, so they never appear in argv.
    - ``docker login --password-stdin`` for the registry token, same reason.

Related Modules:
    - :mod:`pgtestbed.deployer`: uploads images through this runtime
    - :mod:`pgtestbed.probe`: runs database clients through this runtime
"""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Mapping

from pgtestbed.commands import CliTool
from pgtestbed.logging import get_logger

logger = get_logger(__name__)

_DOCKER_HINT = (
    "Install Docker or add it to PATH.\n"
    "  - Linux:   https://docs.docker.com/engine/install/\n"
    "  - macOS:   https://docs.docker.com/desktop/install/mac-install/"
)


class ContainerRuntime:
    """Runs throwaway containers and moves images between registries.

    Example::

        runtime = ContainerRuntime()
        result = runtime.run_ephemeral(
            "centos/postgresql-96-centos7",
            ["pg_isready", "-h", "172.30.12.4"],
        )
    """

    def __init__(self, timeout: int = 300) -> None:
        self._docker = CliTool("docker", timeout=timeout, hint=_DOCKER_HINT)

    @staticmethod
    def is_docker_available() -> bool:
        """Check if Docker is installed and the daemon is running."""
        docker = shutil.which("docker")
        if docker is None:
            return False
        try:
            result = subprocess.run(
                [docker, "info"],
                capture_output=True,
                timeout=10,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    # ------------------------------------------------------------------
    # Throwaway containers
    # ------------------------------------------------------------------

    def run_ephemeral(
        self,
        image: str,
        args: list[str],
        env: Mapping[str, str] | None = None,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``args`` in a new container from ``image`` and discard it.

        Never raises on a non-zero exit; the caller inspects the result.
        """
        cmd = ["run", "--rm"]
        for key in env or {}:
            cmd.extend(["--env", key])
        cmd.append(image)
        cmd.extend(args)
        return self._docker.run(cmd, check=False, env=env, timeout=timeout)

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def login(self, registry: str, username: str, token: str) -> None:
        """Log in to ``registry``; the token is passed on stdin."""
        self._docker.run(
            ["login", "--username", username, "--password-stdin", registry],
            input=token,
        )
        logger.info("registry.login", registry=registry, username=username)

    def tag(self, source: str, target: str) -> None:
        self._docker.run(["tag", source, target])

    def push(self, image: str) -> None:
        self._docker.run(["push", image])
        logger.info("image.pushed", image=image)

    def pull(self, image: str) -> None:
        self._docker.run(["pull", image])
        logger.info("image.pulled", image=image)

    def image_exists(self, image: str) -> bool:
        """Whether ``image`` is present in the local image store."""
        result = self._docker.run(["image", "inspect", image], check=False)
        return result.returncode == 0

    def ensure_image(self, image: str) -> None:
        """Pull ``image`` unless it is already present locally."""
        if not self.image_exists(image):
            self.pull(image)

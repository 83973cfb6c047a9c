"""OpenShift access for pgtestbed.

``OpenShiftClient`` wraps the ``oc`` CLI. Every method is one synchronous
platform call (or a small fixed sequence of them); a failing call raises
``PlatformCommandError`` and aborts the scenario. Readiness predicates
(``is_pod_ready``, ``is_rc_ready``) never raise on "not ready yet"; they
return ``False`` so the poller can retry them.

Key Concepts:
    Project lifecycle: ``new_project()`` / ``delete_project()`` bracket every
        scenario; ``list_projects()`` finds leftovers for ``pgtestbed clean``.
    Application pods: pods whose name starts with a deployment prefix,
        excluding ``*-deploy`` / ``*-build`` helper pods and pods that are
        already being deleted.
    Rollouts: a deployment config's ``status.latestVersion`` names its
        current replication controller (``<dc>-<version>``). A rollout is
        done when that controller reports phase ``Complete`` and all its
        replicas ready.

Related Modules:
    - :mod:`pgtestbed.deployer`: composes these calls into deploy/redeploy
    - :mod:`pgtestbed.runner`: project bracketing around scenarios
"""

from __future__ import annotations

import json
import shutil
import subprocess
from typing import Any

from pgtestbed.commands import CliTool
from pgtestbed.errors import PlatformCommandError
from pgtestbed.logging import get_logger

logger = get_logger(__name__)

HELPER_POD_SUFFIXES = ("-deploy", "-build")
DEPLOYMENT_PHASE_ANNOTATION = "openshift.io/deployment.phase"


class OpenShiftClient:
    """Synchronous wrapper around the ``oc`` CLI.

    Parameters
    ----------
    timeout
        Default timeout in seconds for a single ``oc`` call.
    """

    def __init__(self, timeout: int = 300) -> None:
        self._oc = CliTool("oc", timeout=timeout, hint="Install the OpenShift client and log in.")

    @staticmethod
    def is_oc_available() -> bool:
        """Check that ``oc`` is installed and logged in to a cluster."""
        oc = shutil.which("oc")
        if oc is None:
            return False
        try:
            result = subprocess.run([oc, "whoami"], capture_output=True, timeout=15)
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def whoami(self) -> str:
        return self._oc.output(["whoami"])

    def whoami_token(self) -> str:
        return self._oc.output(["whoami", "--show-token"])

    def current_project(self) -> str:
        return self._oc.output(["project", "--short"])

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def new_project(self, name: str) -> None:
        """Create ``name`` and make it the current project."""
        self._oc.run(["new-project", name])
        logger.info("project.created", project=name)

    def delete_project(self, name: str) -> None:
        self._oc.run(["delete", "project", name])
        logger.info("project.deleted", project=name)

    def list_projects(self, prefix: str = "") -> list[str]:
        """Names of projects visible to the current user, filtered by prefix."""
        output = self._oc.output(["get", "projects", "--output", "name"])
        names = [line.split("/", 1)[-1] for line in output.splitlines() if line.strip()]
        return [n for n in names if n.startswith(prefix)]

    # ------------------------------------------------------------------
    # Creating resources
    # ------------------------------------------------------------------

    def new_app(self, image: str, name: str, env: dict[str, str] | None = None) -> None:
        """``oc new-app`` an image stream (or image) as deployment ``name``."""
        args = ["new-app", image, "--name", name]
        for key, value in (env or {}).items():
            args.extend(["--env", f"{key}={value}"])
        self._oc.run(args)
        logger.info("app.created", image=image, name=name)

    def process_template(self, template: str, params: dict[str, str]) -> str:
        """Render a template file with parameters; returns the JSON list."""
        args = ["process", "--filename", template, "--output", "json"]
        for key, value in params.items():
            args.extend(["--param", f"{key}={value}"])
        return self._oc.output(args)

    def create_from_manifest(self, manifest: str) -> None:
        """``oc create -f -`` with the manifest on stdin."""
        self._oc.run(["create", "--filename", "-"], input=manifest)

    # ------------------------------------------------------------------
    # Pods and services
    # ------------------------------------------------------------------

    def list_pods(self) -> list[dict[str, Any]]:
        output = self._oc.output(["get", "pods", "--output", "json"])
        return _parse_items(output, "pods")

    def get_pod_names(self, prefix: str) -> list[str]:
        """Application pods whose name starts with ``prefix``, sorted."""
        names = []
        for pod in self.list_pods():
            meta = pod.get("metadata", {})
            name = meta.get("name", "")
            if not name.startswith(prefix) or name.endswith(HELPER_POD_SUFFIXES):
                continue
            if meta.get("deletionTimestamp"):
                continue
            names.append(name)
        return sorted(names)

    def get_pod_name(self, prefix: str) -> str:
        """The single application pod for ``prefix``.

        Raises ``PlatformCommandError`` when there is not exactly one.
        """
        names = self.get_pod_names(prefix)
        if len(names) != 1:
            raise PlatformCommandError(
                f"Expected exactly one pod for {prefix!r}, found {len(names)}: {names}"
            )
        return names[0]

    def get_pod_ip(self, pod: str) -> str:
        ip = self._oc.output(["get", "pod", pod, "--output", "jsonpath={.status.podIP}"])
        if not ip:
            raise PlatformCommandError(f"Pod {pod} has no IP address yet")
        return ip

    def get_service_ip(self, service: str) -> str:
        ip = self._oc.output(["get", "service", service, "--output", "jsonpath={.spec.clusterIP}"])
        if not ip:
            raise PlatformCommandError(f"Service {service} has no cluster IP")
        return ip

    def is_pod_ready(self, prefix: str) -> bool:
        """Whether an application pod for ``prefix`` reports ``Ready=True``."""
        for pod in self.list_pods():
            meta = pod.get("metadata", {})
            name = meta.get("name", "")
            if not name.startswith(prefix) or name.endswith(HELPER_POD_SUFFIXES):
                continue
            if meta.get("deletionTimestamp"):
                continue
            if _is_ready(pod):
                return True
        return False

    def delete_pod(self, pod: str) -> None:
        self._oc.run(["delete", "pod", pod])
        logger.info("pod.deleted", pod=pod)

    def pod_logs(self, pod: str) -> str:
        """Logs of ``pod``; empty string when they cannot be fetched."""
        result = self._oc.run(["logs", pod], check=False)
        return result.stdout + result.stderr

    # ------------------------------------------------------------------
    # Deployment configs and replication controllers
    # ------------------------------------------------------------------

    def get_latest_version(self, dc: str) -> int:
        raw = self._oc.output(["get", "dc", dc, "--output", "jsonpath={.status.latestVersion}"])
        return int(raw or 0)

    def is_rc_ready(self, dc: str, min_version: int = 1) -> bool:
        """Whether the current rollout of ``dc`` is complete and fully ready.

        ``min_version`` lets callers wait for a rollout that has not been
        started by the controller yet (config or image change triggers).
        """
        result = self._oc.run(["get", "dc", dc, "--output", "json"], check=False)
        if result.returncode != 0:
            return False
        status = json.loads(result.stdout).get("status", {})
        version = int(status.get("latestVersion") or 0)
        if version < max(min_version, 1):
            return False

        rc_name = f"{dc}-{version}"
        result = self._oc.run(["get", "rc", rc_name, "--output", "json"], check=False)
        if result.returncode != 0:
            return False
        rc = json.loads(result.stdout)
        phase = rc.get("metadata", {}).get("annotations", {}).get(DEPLOYMENT_PHASE_ANNOTATION)
        desired = int(rc.get("spec", {}).get("replicas") or 0)
        ready = int(rc.get("status", {}).get("readyReplicas") or 0)
        return phase == "Complete" and desired > 0 and ready == desired

    def rollout_latest(self, dc: str) -> None:
        self._oc.run(["rollout", "latest", f"dc/{dc}"])
        logger.info("rollout.started", dc=dc)

    def scale(self, dc: str, replicas: int) -> None:
        self._oc.run(["scale", f"dc/{dc}", f"--replicas={replicas}"])
        logger.info("dc.scaled", dc=dc, replicas=replicas)

    def set_env(self, dc: str, env: dict[str, str]) -> None:
        args = ["set", "env", f"dc/{dc}"]
        args.extend(f"{key}={value}" for key, value in env.items())
        self._oc.run(args)
        logger.info("dc.env_set", dc=dc, keys=sorted(env))


def _parse_items(output: str, kind: str) -> list[dict[str, Any]]:
    try:
        return json.loads(output).get("items", [])
    except json.JSONDecodeError as exc:
        raise PlatformCommandError(f"Unparseable oc output listing {kind}", cause=exc) from exc


def _is_ready(pod: dict[str, Any]) -> bool:
    for condition in pod.get("status", {}).get("conditions", []):
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False

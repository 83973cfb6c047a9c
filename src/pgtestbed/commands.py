"""Structured execution of external CLI tools.

Both platform wrappers (``oc`` and ``docker``) go through ``CliTool``.
Commands are always argument lists handed straight to ``subprocess.run``;
nothing is ever assembled into a shell string, so values such as
passwords or SQL can never be re-parsed by a shell.

A non-zero exit raises ``PlatformCommandError`` unless the caller passes
``check=False`` and inspects the returned ``CompletedProcess`` itself.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Mapping

from pgtestbed.errors import PlatformCommandError, ToolNotFoundError
from pgtestbed.logging import get_logger

logger = get_logger(__name__)


class CliTool:
    """Thin wrapper around one CLI binary found on PATH.

    Parameters
    ----------
    binary
        Executable name (``oc``, ``docker``).
    timeout
        Default per-call timeout in seconds.
    hint
        Appended to the ``ToolNotFoundError`` message.
    """

    def __init__(self, binary: str, timeout: int = 300, hint: str = "") -> None:
        self.binary = binary
        self.timeout = timeout
        self._path = self._find(binary, hint)

    @staticmethod
    def _find(binary: str, hint: str) -> str:
        path = shutil.which(binary)
        if path is None:
            raise ToolNotFoundError(binary, hint)
        return path

    def run(
        self,
        args: list[str],
        *,
        check: bool = True,
        input: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``<binary> *args`` and capture its output.

        ``env`` is merged on top of the current process environment.
        """
        cmd = [self._path, *args]
        effective_timeout = timeout or self.timeout
        logger.debug("cli.exec", tool=self.binary, args=args)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                input=input,
                env={**os.environ, **env} if env else None,
                timeout=effective_timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise PlatformCommandError(
                f"{self.binary} command timed out after {effective_timeout}s: {' '.join(args)}",
                command=[self.binary, *args],
                cause=exc,
            ) from exc
        except OSError as exc:
            raise PlatformCommandError(
                f"{self.binary} could not be executed: {exc}",
                command=[self.binary, *args],
                cause=exc,
            ) from exc

        if check and result.returncode != 0:
            raise PlatformCommandError(
                f"{self.binary} command failed (exit {result.returncode}): "
                f"{' '.join(args)}\n{result.stderr}",
                command=[self.binary, *args],
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    def output(self, args: list[str], **kwargs) -> str:
        """Run a command that must succeed and return its stripped stdout."""
        return self.run(args, check=True, **kwargs).stdout.strip()

"""
External command runner — the SINGLE PLACE where subprocesses start.

apt/nala, the Nix installer, nix-channel, systemctl, home-manager:
every external tool goes through ``CommandRunner``. Output streams
straight to the terminal unless a caller asks to capture it for a
presence check. There is no retry and, by default, no timeout.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence

from pydantic import BaseModel, Field

from nixdesk.core.errors import ExternalCommandError

logger = logging.getLogger(__name__)


class ExitOutcome(BaseModel):
    """Result of one external command."""

    command: list[str] = Field(default_factory=list)
    returncode: int = 0
    duration_ms: int = 0
    stdout: str = ""   # only populated when captured
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def display(self) -> str:
        return shlex.join(self.command)


def merge_env(env: Mapping[str, str] | None) -> dict[str, str]:
    """Overlay ``env`` onto the current process environment."""
    merged = os.environ.copy()
    if env:
        merged.update(env)
    return merged


class CommandRunner:
    """Run external executables and report their exit status.

    Args:
        use_sudo_prefix: Prefix ``sudo`` for ``sudo=True`` calls when the
            process is not already root.
    """

    def __init__(self, use_sudo_prefix: bool = True):
        self._use_sudo_prefix = use_sudo_prefix

    def _argv(self, command: str, args: Sequence[str], sudo: bool) -> list[str]:
        argv = [command, *args]
        if sudo and self._use_sudo_prefix and os.geteuid() != 0:
            argv = ["sudo", *argv]
        return argv

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        *,
        cwd: str | None = None,
        capture: bool = False,
        sudo: bool = False,
        timeout: float | None = None,
    ) -> ExitOutcome:
        """Invoke ``command`` with ``args`` and return its exit outcome.

        A missing executable is reported as exit code 127, like a shell.
        """
        argv = self._argv(command, args, sudo)
        logger.debug("Executing: %s (cwd=%s)", shlex.join(argv), cwd)
        start = time.monotonic()

        try:
            result = subprocess.run(
                argv,
                env=merge_env(env),
                cwd=cwd,
                capture_output=capture,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError:
            logger.debug("Executable not found: %s", argv[0])
            return ExitOutcome(
                command=argv,
                returncode=127,
                stderr=f"{argv[0]}: command not found",
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        outcome = ExitOutcome(
            command=argv,
            returncode=result.returncode,
            duration_ms=elapsed_ms,
            stdout=(result.stdout or "") if capture else "",
            stderr=(result.stderr or "") if capture else "",
        )
        logger.debug("→ exit %d in %dms", outcome.returncode, elapsed_ms)
        return outcome

    def check(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        **kwargs,
    ) -> ExitOutcome:
        """Like ``run`` but raise ``ExternalCommandError`` on non-zero exit."""
        outcome = self.run(command, args, env, **kwargs)
        if not outcome.ok:
            raise ExternalCommandError(
                outcome.command,
                outcome.returncode,
                outcome.stderr.strip()[-500:],
            )
        return outcome

    def succeeds(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        **kwargs,
    ) -> bool:
        """Quiet probe: True when the command exits 0. Output is discarded."""
        return self.run(command, args, env, capture=True, **kwargs).ok

    def exists(self, name: str, env: Mapping[str, str] | None = None) -> bool:
        """``command -v`` equivalent, honouring PATH from an env overlay."""
        path = (env or {}).get("PATH") or os.environ.get("PATH")
        return shutil.which(name, path=path) is not None

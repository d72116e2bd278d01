"""
Mock adapters — test doubles for external commands and file writes.

Used in ``--mock`` mode and the tests to provision without touching
the system. Every call is recorded; exit codes and presence checks
are configurable per command. ``MockArtifactWriter`` keeps writes in
memory instead of on disk.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from nixdesk.adapters.shell.command import CommandRunner, ExitOutcome
from nixdesk.adapters.shell.filesystem import ArtifactWriter


@dataclass
class RecordedCall:
    argv: list[str]
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    sudo: bool = False


class MockCommandRunner(CommandRunner):
    """Records commands instead of running them.

    By default every command succeeds and no executable "exists".

    Args:
        available: Executables that ``exists()`` reports as present.
        default_returncode: Exit code for commands without a custom one.
    """

    def __init__(
        self,
        available: Sequence[str] = (),
        default_returncode: int = 0,
    ):
        super().__init__(use_sudo_prefix=False)
        self._available = set(available)
        self._default_returncode = default_returncode
        self._returncodes: dict[str, int] = {}
        self._installs: dict[str, list[str]] = {}
        self._call_log: list[RecordedCall] = []

    @property
    def call_log(self) -> list[RecordedCall]:
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def commands(self) -> list[str]:
        """Recorded calls as single strings, for easy assertions."""
        return [" ".join(c.argv) for c in self._call_log]

    def set_returncode(self, prefix: str, returncode: int) -> None:
        """Calls whose joined argv starts with ``prefix`` exit with ``returncode``."""
        self._returncodes[prefix] = returncode

    def set_failure(self, prefix: str) -> None:
        self.set_returncode(prefix, 1)

    def make_available(self, *names: str) -> None:
        self._available.update(names)

    def installs(self, prefix: str, *names: str) -> None:
        """A successful call matching ``prefix`` makes ``names`` available."""
        self._installs[prefix] = list(names)

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
        argv = [command, *args]
        self._call_log.append(
            RecordedCall(argv=argv, env=dict(env or {}), cwd=cwd, sudo=sudo)
        )
        joined = " ".join(argv)

        returncode = self._default_returncode
        # Longest matching prefix wins
        for prefix in sorted(self._returncodes, key=len, reverse=True):
            if joined.startswith(prefix):
                returncode = self._returncodes[prefix]
                break

        if returncode == 0:
            for prefix, names in self._installs.items():
                if joined.startswith(prefix):
                    self._available.update(names)

        return ExitOutcome(command=argv, returncode=returncode)

    def exists(self, name: str, env: Mapping[str, str] | None = None) -> bool:
        return name in self._available

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._returncodes.clear()
        self._installs.clear()


class MockArtifactWriter(ArtifactWriter):
    """Records artifact writes in memory instead of touching the disk."""

    def __init__(self, runner: CommandRunner | None = None):
        super().__init__(runner or MockCommandRunner(), privileged=True, sudo_available=True)
        self.writes: dict[Path, str] = {}
        self.appends: dict[Path, str] = {}

    def write(
        self,
        path: Path | str,
        content: str,
        mode: int = 0o644,
        requires_elevation: bool = False,
        backup: bool = False,
    ) -> Path | None:
        self.writes[Path(path)] = content
        return None

    def append_block(self, path: Path | str, block: str, marker: str) -> bool:
        path = Path(path)
        if marker in self.appends.get(path, ""):
            return False
        self.appends[path] = self.appends.get(path, "") + block
        return True

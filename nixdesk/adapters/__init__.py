"""
Adapters — the only code that touches the outside world.

    CommandRunner     → external executables (apt, nix, systemctl, ...)
    ArtifactWriter    → atomic file writes, privileged installs, backups
    Mock*             → recording test doubles for --mock and tests
"""

from nixdesk.adapters.mock import MockArtifactWriter, MockCommandRunner
from nixdesk.adapters.shell.command import CommandRunner, ExitOutcome
from nixdesk.adapters.shell.filesystem import ArtifactWriter

__all__ = [
    "ArtifactWriter",
    "CommandRunner",
    "ExitOutcome",
    "MockArtifactWriter",
    "MockCommandRunner",
]

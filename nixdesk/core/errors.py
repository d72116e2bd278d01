"""
Error taxonomy for provisioning.

Every failure a step can hit is a ``ProvisionError``. The orchestrator
catches these (plus ``OSError`` from plain file writes) and turns them
into a failed receipt. Anything else is a bug and propagates.

    ProvisionError
    ├── PrivilegeError          wrong identity, raised before any step
    ├── DependencyMissingError  tool still absent after installing it
    ├── TemplateError           unknown template / missing substitution
    ├── PrivilegedWriteError    sudo write or service action failed
    ├── ExternalCommandError    external command exited non-zero
    └── StepOrderError          a step requires one declared after it
"""

from __future__ import annotations

from collections.abc import Sequence


class ProvisionError(Exception):
    """Base class for all provisioning failures."""


class PrivilegeError(ProvisionError):
    """Process runs under a disallowed (or lacks a required) identity."""


class DependencyMissingError(ProvisionError):
    """A required external tool is missing after an install attempt.

    ``guidance`` holds the manual remediation steps shown to the user.
    """

    def __init__(self, tool: str, guidance: Sequence[str] = ()):
        self.tool = tool
        self.guidance = list(guidance)
        super().__init__(f"'{tool}' is still not available")


class TemplateError(ProvisionError):
    """A template is unknown or a required substitution value is absent."""


class PrivilegedWriteError(ProvisionError, PermissionError):
    """A privileged file write or service action failed."""


class ExternalCommandError(ProvisionError):
    """An external command exited non-zero (or could not be started)."""

    def __init__(self, command: Sequence[str], returncode: int, detail: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.detail = detail
        msg = f"'{' '.join(self.command)}' exited with code {returncode}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class StepOrderError(ProvisionError):
    """Step list violates its declared ordering requirements."""

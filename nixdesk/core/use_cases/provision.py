"""
Provision use case — the full vertical slice.

    load config → build profile → build steps → run → audit

This is what ``nixdesk run`` and ``nixdesk plan`` call. It never raises
for expected failures: config errors, privilege violations and bad
step selections come back in ``ProvisionResult.error``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from nixdesk.adapters.mock import MockArtifactWriter, MockCommandRunner
from nixdesk.adapters.shell.command import CommandRunner
from nixdesk.adapters.shell.filesystem import ArtifactWriter
from nixdesk.core.config.loader import ConfigError, load_config
from nixdesk.core.engine.orchestrator import Orchestrator, RunListener, RunResult
from nixdesk.core.errors import PrivilegeError, StepOrderError
from nixdesk.core.models.config import ProvisionConfig
from nixdesk.core.models.profile import EnvironmentProfile
from nixdesk.core.persistence.audit import (
    AuditEntry,
    AuditLedger,
    default_audit_path,
    generate_run_id,
)
from nixdesk.core.services.detection import build_profile
from nixdesk.core.services.workstation import build_steps, next_actions

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Result of a provisioning run (or plan)."""

    run: RunResult | None = None
    config: ProvisionConfig | None = None
    profile: EnvironmentProfile | None = None
    run_id: str = ""
    steps_planned: list[str] = field(default_factory=list)
    next_actions: list[str] = field(default_factory=list)
    error: str | None = None
    audit_path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.run is not None and self.run.ok

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict:
        result: dict = {"run_id": self.run_id, "ok": self.ok}
        if self.error:
            result["error"] = self.error
            return result

        result["user"] = self.profile.user if self.profile else ""
        result["steps_planned"] = self.steps_planned
        if self.run:
            result["run"] = self.run.to_dict()
        if self.ok:
            result["next_actions"] = self.next_actions
        return result


def mock_adapters() -> tuple[MockCommandRunner, MockArtifactWriter]:
    """Runner/writer pair for ``--mock``: installers "install" their tools."""
    runner = MockCommandRunner()
    runner.installs("sh ", "nix")
    runner.installs("nix-shell", "home-manager")
    return runner, MockArtifactWriter(runner)


def provision(
    config_path: Path | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    only: list[str] | None = None,
    listener: RunListener | None = None,
    profile: EnvironmentProfile | None = None,
    runner: CommandRunner | None = None,
    writer: ArtifactWriter | None = None,
    audit_path: Path | None = None,
) -> ProvisionResult:
    """Provision the workstation.

    Args:
        config_path: Explicit nixdesk.yml (None = search, then defaults).
        dry_run: Evaluate preconditions only.
        mock_mode: Record commands and writes instead of executing them.
        only: Restrict the run to these step names.
        listener: Progress hook for the CLI.
        profile: Pre-built profile (default: detect from this process).
        runner: Command runner override.
        writer: Artifact writer override.
        audit_path: Ledger override (default: the user's state dir).

    Returns:
        ProvisionResult with the run result or an error.
    """
    result = ProvisionResult(run_id=generate_run_id())

    # ── Load config ──────────────────────────────────────────────
    try:
        config = load_config(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result
    result.config = config

    # ── Profile + adapters ───────────────────────────────────────
    if profile is None:
        profile = build_profile(gpu=config.gpu)
    result.profile = profile

    if mock_mode and runner is None and writer is None:
        runner, writer = mock_adapters()
    if runner is None:
        runner = CommandRunner()
    if writer is None:
        writer = ArtifactWriter(
            runner,
            privileged=profile.is_root,
            sudo_available=profile.sudo_available,
        )

    # ── Build steps ──────────────────────────────────────────────
    try:
        steps = build_steps(config, profile, runner, writer, only=only)
    except ValueError as e:
        result.error = str(e)
        return result
    result.steps_planned = [s.name for s in steps]

    # ── Run ──────────────────────────────────────────────────────
    orchestrator = Orchestrator(
        privilege=config.privilege,
        dry_run=dry_run,
        listener=listener,
    )
    start = time.monotonic()
    try:
        run = orchestrator.run(steps, profile)
    except (PrivilegeError, StepOrderError) as e:
        result.error = str(e)
        return result
    result.run = run
    elapsed_ms = int((time.monotonic() - start) * 1000)

    if run.ok:
        result.next_actions = next_actions(config, profile)

    # ── Audit ────────────────────────────────────────────────────
    if config.audit and not dry_run and not mock_mode:
        ledger = AuditLedger(audit_path or default_audit_path(profile.home or None))
        if ledger.append(AuditEntry.from_run(result.run_id, run, profile, config, elapsed_ms)):
            result.audit_path = ledger.path

    return result


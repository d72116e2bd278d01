"""
nixdesk — CLI entrypoint.

Usage:
    nixdesk --help
    nixdesk run
    nixdesk plan
    nixdesk render hyprland_conf
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from nixdesk import __version__
from nixdesk.core.engine.orchestrator import RunListener
from nixdesk.core.models.step import Step, StepReceipt
from nixdesk.core.observability.logging_config import resolve_level, setup_logging

_STATUS_STYLE = {
    "completed": ("✓", "green"),
    "skipped": ("⊘", "yellow"),
    "warned": ("!", "yellow"),
    "failed": ("✗", "red"),
    "not_attempted": ("·", "white"),
}


class ConsoleListener(RunListener):
    """Prints a coloured status line per step as the run progresses."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def step_started(self, step: Step) -> None:
        click.secho(f"==> {step.label}...", fg="blue", bold=True)

    def step_finished(self, step: Step, receipt: StepReceipt) -> None:
        icon, color = _STATUS_STYLE.get(receipt.status, ("?", "white"))
        timing = f" ({receipt.duration_ms}ms)" if receipt.duration_ms else ""
        click.secho(f"   {icon} {step.name}", fg=color, nl=False)
        click.echo(f"{timing}")
        detail = receipt.error if receipt.error else receipt.output
        if detail and (self.verbose or receipt.status != "completed"):
            for line in detail.split("\n")[:5]:
                click.echo(f"     │ {line}")


def _load(ctx: click.Context):
    """Load config + profile for read-only commands, exiting on config errors."""
    from nixdesk.core.config.loader import ConfigError, load_config
    from nixdesk.core.services.detection import build_profile

    try:
        config = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)
    return config, build_profile(gpu=config.gpu)


@click.group()
@click.version_option(version=__version__, prog_name="nixdesk")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to nixdesk.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """nixdesk — provision a Nix + Hyprland workstation."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get("NIXDESK_LOG_FILE"),
        log_file_level=os.environ.get("NIXDESK_LOG_FILE_LEVEL"),
    )


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--dry-run", is_flag=True, help="Check preconditions but don't execute.")
@click.option("--mock", is_flag=True, help="Record commands and writes (no real execution).")
@click.option("--only", "only", multiple=True, help="Run only these steps.")
@click.pass_context
def run(
    ctx: click.Context,
    as_json: bool,
    dry_run: bool,
    mock: bool,
    only: tuple[str, ...],
) -> None:
    """Provision the workstation.

    Examples:

        nixdesk run

        nixdesk run --dry-run

        nixdesk run --only hyprland-conf --only start-hyprland
    """
    from nixdesk.core.use_cases.provision import provision

    quiet = ctx.obj.get("quiet", False)
    listener = None if (as_json or quiet) else ConsoleListener(ctx.obj.get("verbose", False))

    try:
        result = provision(
            config_path=ctx.obj.get("config_path"),
            dry_run=dry_run,
            mock_mode=mock,
            only=list(only) if only else None,
            listener=listener,
        )
    except KeyboardInterrupt:
        click.secho("\n❌ Interrupted — completed steps are left in place", fg="red")
        sys.exit(130)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    run_result = result.run
    if result.error or run_result is None:
        click.secho(f"❌ {result.error or 'No steps were run'}", fg="red")
        sys.exit(1)

    click.echo()
    failed = run_result.failed_receipt
    if failed is not None:
        click.secho(f"❌ Step '{failed.step}' failed: {failed.error}", fg="red", bold=True)
        if failed.guidance:
            click.secho("   Please run these commands manually:", fg="yellow")
            for i, line in enumerate(failed.guidance, start=1):
                click.echo(f"   {i}. {line}")
        if run_result.not_attempted:
            click.echo(f"   Not attempted: {', '.join(run_result.not_attempted)}")
        click.echo()
        sys.exit(1)

    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    summary = (
        f"{len(run_result.completed)} completed, {len(run_result.skipped)} already satisfied"
    )
    if run_result.warned:
        summary += f", {len(run_result.warned)} with warnings"
    click.secho(f"✅ {mode_label}Provisioning complete — {summary}", fg="green", bold=True)

    if not quiet and not dry_run:
        from nixdesk.core.services.workstation import KEYBINDINGS

        click.echo()
        click.secho("Next steps:", bold=True)
        for i, action in enumerate(result.next_actions, start=1):
            click.echo(f"   {i}. {action}")
        click.echo()
        click.secho("Key bindings:", bold=True)
        for keys, what in KEYBINDINGS:
            click.echo(f"   {keys}: {what}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, as_json: bool) -> None:
    """List the steps in order and whether each is already satisfied."""
    from nixdesk.core.use_cases.provision import provision

    result = provision(config_path=ctx.obj.get("config_path"), dry_run=True)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    run_result = result.run
    if result.error or run_result is None:
        click.secho(f"❌ {result.error or 'No steps were run'}", fg="red")
        sys.exit(1)

    click.secho(f"\n📋 Plan for {result.profile.user}", fg="cyan", bold=True)
    for i, receipt in enumerate(run_result.receipts, start=1):
        if receipt.status == "skipped" and not receipt.output.startswith("[dry-run]"):
            click.secho(f"   {i:>2}. ⊘ {receipt.step}", fg="yellow", nl=False)
            click.echo("  (already satisfied)")
        elif receipt.failed:
            click.secho(f"   {i:>2}. ✗ {receipt.step}", fg="red", nl=False)
            click.echo(f"  ({receipt.error})")
        else:
            click.secho(f"   {i:>2}. → {receipt.step}", fg="green")
    click.echo()

    if not run_result.ok:
        sys.exit(1)


@cli.command()
@click.argument("template_id")
@click.option(
    "--output", "-o", type=click.Path(dir_okay=False), default=None,
    help="Write to this file instead of stdout.",
)
@click.pass_context
def render(ctx: click.Context, template_id: str, output: str | None) -> None:
    """Render a template for the current user."""
    from nixdesk.adapters.shell.filesystem import atomic_write
    from nixdesk.core.errors import TemplateError
    from nixdesk.core.templates.renderer import render as render_template

    config, profile = _load(ctx)
    try:
        text = render_template(template_id, profile, config.template_settings())
    except TemplateError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if output:
        atomic_write(Path(output), text, 0o755 if template_id == "start_hyprland" else 0o644)
        click.secho(f"✅ Wrote {output}", fg="green")
        return
    click.echo(text, nl=False)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def profile(ctx: click.Context, as_json: bool) -> None:
    """Show the detected environment profile."""
    config, env_profile = _load(ctx)

    if as_json:
        click.echo(json.dumps(env_profile.to_dict(), indent=2))
        return

    click.secho("\n🖥  Environment profile", fg="cyan", bold=True)
    click.echo(f"   User:   {env_profile.user} (uid {env_profile.uid})")
    click.echo(f"   Home:   {env_profile.home}")
    click.echo(f"   Shell:  {env_profile.shell or '-'}")
    click.echo(f"   GPU:    {env_profile.gpu}")
    root_label = "yes" if env_profile.is_root else "no"
    sudo_label = "yes" if env_profile.sudo_available else "no"
    click.echo(f"   Root:   {root_label}    sudo: {sudo_label}")
    click.echo(f"   Policy: {config.privilege}")
    click.echo()


@cli.command()
@click.option("-n", "count", default=10, type=int, help="Number of entries.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def history(count: int, as_json: bool) -> None:
    """Show recent provisioning runs."""
    from nixdesk.core.persistence.audit import AuditLedger

    entries = AuditLedger().recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No provisioning runs recorded yet.")
        return

    status_color = {"ok": "green", "partial": "yellow", "failed": "red"}
    for entry in entries:
        click.echo(f"{entry.timestamp}  {entry.run_id}  ", nl=False)
        click.secho(entry.status, fg=status_color.get(entry.status, "white"), nl=False)
        if entry.failed_step:
            click.echo(f"  (failed at {entry.failed_step})")
        else:
            click.echo()


if __name__ == "__main__":
    cli()

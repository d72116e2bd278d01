"""
Workstation step catalogue — the ordered provisioning recipe.

Turns a ProvisionConfig + EnvironmentProfile into the list of Steps the
orchestrator runs. Every step carries its own idempotency guard, so a
second run over a provisioned machine only repeats the steps that have
no cheap "already done" check (flake update, activation).

Order matters and is enforced through ``requires``:

    system-packages → nvidia-drivers → nix → nix-flakes-* → home-manager
    → generated artifacts → shell-env → display-manager
    → flake-update → home-manager-switch
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Callable
from pathlib import Path

from nixdesk.adapters.shell.command import CommandRunner
from nixdesk.adapters.shell.filesystem import ArtifactWriter, read_text
from nixdesk.core.errors import (
    DependencyMissingError,
    ExternalCommandError,
    PrivilegedWriteError,
)
from nixdesk.core.models.config import ProvisionConfig
from nixdesk.core.models.profile import NIX_DAEMON_PROFILE, EnvironmentProfile
from nixdesk.core.models.step import GeneratedArtifact, Step
from nixdesk.core.templates.renderer import render

logger = logging.getLogger(__name__)

FLAKE_DIR = "~/.config/nixpkgs"
SYSTEM_NIX_CONF = "/etc/nix/nix.conf"
WAYLAND_SESSION = "/usr/share/wayland-sessions/hyprland.desktop"
SHELL_ENV_MARKER = "ANDROID_HOME"
FLAKE_FEATURES = ("nix-command", "flakes")

# Artifact steps are named after their template unless listed here
_STEP_NAMES = {"hyprland_desktop": "wayland-session"}


def _read_text(path: Path) -> str | None:
    try:
        return read_text(path)
    except OSError:
        return None


def enabled_features(conf_text: str) -> list[str]:
    """Experimental features a nix.conf turns on, in order.

    A later ``experimental-features`` line replaces earlier ones;
    ``extra-experimental-features`` adds to them.
    """
    features: list[str] = []
    for line in conf_text.splitlines():
        key, sep, value = line.split("#", 1)[0].partition("=")
        key = key.strip()
        if not sep:
            continue
        if key == "experimental-features":
            features = []
        elif key != "extra-experimental-features":
            continue
        features += [f for f in value.split() if f not in features]
    return features


class WorkstationSteps:
    """Builds the provisioning steps for one profile.

    Args:
        config: Validated configuration.
        profile: Runtime facts (frozen).
        runner: External command runner.
        writer: Artifact writer (shares ``runner`` for sudo operations).
    """

    def __init__(
        self,
        config: ProvisionConfig,
        profile: EnvironmentProfile,
        runner: CommandRunner,
        writer: ArtifactWriter,
    ):
        self.config = config
        self.profile = profile
        self.runner = runner
        self.writer = writer
        self._settings = config.template_settings()

    # ── Artifacts ───────────────────────────────────────────────

    def artifacts(self) -> list[GeneratedArtifact]:
        """Generated files, in the order they are written."""
        backup = self.config.backup
        items = [
            GeneratedArtifact(template_id="flake_nix", path=f"{FLAKE_DIR}/flake.nix", backup=backup),
            GeneratedArtifact(template_id="home_nix", path=f"{FLAKE_DIR}/home.nix", backup=backup),
        ]
        if self.config.dev_shell:
            items.append(
                GeneratedArtifact(template_id="shell_nix", path=f"{FLAKE_DIR}/shell.nix", backup=backup)
            )
        items += [
            GeneratedArtifact(
                template_id="hyprland_conf", path="~/.config/hypr/hyprland.conf", backup=backup
            ),
            GeneratedArtifact(
                template_id="start_hyprland", path="~/.local/bin/start-hyprland", mode=0o755
            ),
            GeneratedArtifact(
                template_id="hyprland_desktop",
                path=WAYLAND_SESSION,
                requires_elevation=True,
                backup=backup,
            ),
        ]
        return items

    def render(self, template_id: str) -> str:
        return render(template_id, self.profile, self._settings)

    def artifact_step(
        self,
        artifact: GeneratedArtifact,
        name: str | None = None,
        requires: tuple[str, ...] = (),
    ) -> Step:
        """A step that writes ``artifact``; satisfied when content already matches."""
        target = self.profile.expand(artifact.path)
        if name is None:
            name = _STEP_NAMES.get(artifact.template_id, artifact.template_id.replace("_", "-"))

        def is_current() -> bool:
            return _read_text(target) == self.render(artifact.template_id)

        def write() -> str:
            content = self.render(artifact.template_id)
            backup = self.writer.write(
                target,
                content,
                mode=artifact.mode,
                requires_elevation=artifact.requires_elevation,
                backup=artifact.backup,
            )
            if backup:
                return f"wrote {target} (backup: {backup.name})"
            return f"wrote {target}"

        return Step(
            name=name,
            description=f"Write {artifact.path}",
            precondition=is_current,
            action=write,
            requires=requires,
        )

    # ── Helpers ─────────────────────────────────────────────────

    def _packages_installed(self, packages: list[str]) -> Callable[[], bool]:
        def check() -> bool:
            return self.runner.succeeds("dpkg", ["-s", *packages])
        return check

    def _install_packages(self, packages: list[str]) -> Callable[[], str]:
        frontend = self.config.package_frontend

        def install() -> str:
            self.runner.check(frontend, ["update"], sudo=True)
            self.runner.check(frontend, ["install", "-y", *packages], sudo=True)
            return f"installed {len(packages)} package(s) with {frontend}"
        return install

    def _has(self, tool: str) -> bool:
        return self.runner.exists(tool, env=self.profile.nix_env())

    def _require_tool(self, tool: str, guidance: list[str]) -> None:
        if not self._has(tool):
            raise DependencyMissingError(tool, guidance)

    # ── System layer ────────────────────────────────────────────

    def system_packages(self) -> Step:
        packages = self.config.system_packages
        return Step(
            name="system-packages",
            description="Install base system packages",
            precondition=self._packages_installed(packages),
            action=self._install_packages(packages),
        )

    def nvidia_drivers(self) -> Step:
        packages = self.config.nvidia_packages
        return Step(
            name="nvidia-drivers",
            description="Install NVIDIA drivers",
            precondition=self._packages_installed(packages),
            action=self._install_packages(packages),
            requires=("system-packages",),
        )

    # ── Nix layer ───────────────────────────────────────────────

    def install_nix(self) -> Step:
        daemon = self.config.nix_install == "daemon"

        def install() -> str:
            with tempfile.TemporaryDirectory(prefix="nixdesk-") as tmp:
                installer = str(Path(tmp) / "install-nix.sh")
                self.runner.check("curl", ["-fsSL", "-o", installer, self.config.nix_installer_url])
                self.runner.check("sh", [installer, "--daemon" if daemon else "--no-daemon"])

            script = (
                f"{NIX_DAEMON_PROFILE}/etc/profile.d/nix-daemon.sh"
                if daemon
                else f"{self.profile.home}/.nix-profile/etc/profile.d/nix.sh"
            )
            self._require_tool("nix", [
                f". {script}",
                "Run nixdesk again",
            ])
            return f"installed Nix ({self.config.nix_install})"

        return Step(
            name="nix",
            description="Install the Nix package manager",
            precondition=lambda: self._has("nix"),
            action=install,
            requires=("system-packages",),
        )

    def system_flakes(self) -> Step:
        conf = Path(SYSTEM_NIX_CONF)

        def enabled() -> bool:
            features = enabled_features(_read_text(conf) or "")
            return all(f in features for f in FLAKE_FEATURES)

        def enable() -> str:
            existing = _read_text(conf) or ""
            features = enabled_features(existing)
            if features:
                # Keep features already enabled; this line replaces theirs
                features += [f for f in FLAKE_FEATURES if f not in features]
                addition = f"experimental-features = {' '.join(features)}\n"
            else:
                addition = self.render("nix_conf")
            if existing and not existing.endswith("\n"):
                existing += "\n"
            self.writer.write(
                conf,
                existing + addition,
                requires_elevation=True,
                backup=self.config.backup and bool(existing),
            )
            try:
                self.runner.check("systemctl", ["restart", "nix-daemon"], sudo=True)
            except ExternalCommandError as e:
                raise PrivilegedWriteError(f"Could not restart nix-daemon: {e}") from e
            return "enabled flakes system-wide and restarted nix-daemon"

        return Step(
            name="nix-flakes-system",
            description="Enable Nix flakes system-wide",
            precondition=enabled,
            action=enable,
            requires=("nix",),
        )

    def user_flakes(self) -> Step:
        artifact = GeneratedArtifact(template_id="nix_conf", path="~/.config/nix/nix.conf")
        return self.artifact_step(artifact, name="nix-flakes-user", requires=("nix",))

    def home_manager(self) -> Step:
        env = self.profile.nix_env()

        def install() -> str:
            self.runner.check(
                "nix-channel", ["--add", self.config.home_manager_channel, "home-manager"], env
            )
            self.runner.check("nix-channel", ["--update"], env)
            self.runner.check("nix-shell", ["<home-manager>", "-A", "install"], env)
            self._require_tool("home-manager", [
                "nix-channel --update",
                "nix-shell '<home-manager>' -A install",
                "Log out and back in, then run nixdesk again",
            ])
            return "installed home-manager"

        return Step(
            name="home-manager",
            description="Install Home Manager",
            precondition=lambda: self._has("home-manager"),
            action=install,
            requires=("nix",),
        )

    # ── Desktop layer ───────────────────────────────────────────

    def shell_env(self) -> Step:
        rc = self.profile.expand(self.config.shell_rc)

        def present() -> bool:
            return SHELL_ENV_MARKER in (_read_text(rc) or "")

        def append() -> str:
            appended = self.writer.append_block(rc, self.render("android_env"), SHELL_ENV_MARKER)
            return f"appended Android SDK block to {rc}" if appended else "already present"

        return Step(
            name="shell-env",
            description=f"Add Android SDK variables to {self.config.shell_rc}",
            precondition=present,
            action=append,
        )

    def display_manager(self) -> Step:
        dm = self.config.display_manager

        def enable() -> str:
            try:
                self.runner.check("systemctl", ["enable", dm], sudo=True)
            except ExternalCommandError as e:
                raise PrivilegedWriteError(f"Could not enable {dm}: {e}") from e
            return f"enabled {dm}"

        return Step(
            name="display-manager",
            description=f"Enable the {dm} display manager",
            precondition=lambda: self.runner.succeeds("systemctl", ["is-enabled", dm]),
            action=enable,
            on_failure="warn",
        )

    # ── Activation ──────────────────────────────────────────────

    def flake_update(self) -> Step:
        flake_dir = str(self.profile.expand(FLAKE_DIR))

        def update() -> str:
            self.runner.check("nix", ["flake", "update"], self.profile.nix_env(), cwd=flake_dir)
            return "updated flake inputs"

        return Step(
            name="flake-update",
            description="Update flake inputs",
            action=update,
            requires=("nix", "flake-nix", "home-nix"),
        )

    def home_manager_switch(self) -> Step:
        flake_dir = str(self.profile.expand(FLAKE_DIR))

        def switch() -> str:
            self.runner.check(
                "home-manager",
                ["switch", "--flake", f".#{self.profile.user}"],
                self.profile.nix_env(),
                cwd=flake_dir,
            )
            return "activated home-manager configuration"

        return Step(
            name="home-manager-switch",
            description="Apply the Home Manager configuration",
            action=switch,
            requires=("home-manager", "flake-update"),
        )

    # ── Assembly ────────────────────────────────────────────────

    def build(self) -> list[Step]:
        steps = [self.system_packages()]
        if self.profile.has_nvidia:
            steps.append(self.nvidia_drivers())
        steps.append(self.install_nix())
        if self.config.nix_install == "daemon":
            steps.append(self.system_flakes())
        steps += [self.user_flakes(), self.home_manager()]
        steps += [self.artifact_step(a) for a in self.artifacts()]
        steps.append(self.shell_env())
        if self.config.display_manager.lower() != "none":
            steps.append(self.display_manager())
        if self.config.activate:
            steps += [self.flake_update(), self.home_manager_switch()]
        return steps


def build_steps(
    config: ProvisionConfig,
    profile: EnvironmentProfile,
    runner: CommandRunner,
    writer: ArtifactWriter,
    only: list[str] | None = None,
) -> list[Step]:
    """Build the workstation recipe, optionally narrowed to ``only``.

    Narrowing drops ``requires`` edges to steps that were filtered out:
    the caller asked for those steps explicitly.
    """
    steps = WorkstationSteps(config, profile, runner, writer).build()
    if not only:
        return steps

    unknown = sorted(set(only) - {s.name for s in steps})
    if unknown:
        raise ValueError(f"Unknown step(s): {', '.join(unknown)}")

    kept = [s for s in steps if s.name in only]
    names = {s.name for s in kept}
    return [
        Step(
            name=s.name,
            action=s.action,
            precondition=s.precondition,
            description=s.description,
            on_failure=s.on_failure,
            requires=tuple(r for r in s.requires if r in names),
        )
        for s in kept
    ]


def next_actions(config: ProvisionConfig, profile: EnvironmentProfile) -> list[str]:
    """Manual follow-ups printed after a successful run."""
    actions = ["Reboot your system (or log out and back in)"]
    if config.display_manager.lower() != "none":
        actions.append(f"Select the Hyprland session in {config.display_manager.upper()} and log in")
    if not config.activate:
        actions.append(
            f"Run 'home-manager switch --flake {FLAKE_DIR}#{profile.user}' to apply the configuration"
        )
    actions.append(f"Edit {FLAKE_DIR}/home.nix to customize your setup")
    return actions


KEYBINDINGS = [
    ("Super + Return", "Open terminal"),
    ("Super + Q", "Close window"),
    ("Super + R", "Open application launcher"),
    ("Super + M", "Exit Hyprland"),
]

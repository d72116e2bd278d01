"""
ProvisionConfig — the user-editable knobs, loaded from nixdesk.yml.

Every field has a default so a missing config file means "provision
the stock workstation". Script variants (apt vs nala, daemon vs
single-user Nix) are just different values here.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

PackageFrontend = Literal["apt", "nala"]
NixInstallMode = Literal["daemon", "single-user"]
PrivilegePolicy = Literal["forbid-root", "require-root", "any"]
GpuSetting = Literal["auto", "nvidia", "amd", "intel", "none"]

DEFAULT_SYSTEM_PACKAGES = ["curl", "git", "wget", "xz-utils", "build-essential"]
DEFAULT_NVIDIA_PACKAGES = ["nvidia-driver", "firmware-misc-nonfree"]
DEFAULT_HOME_PACKAGES = [
    # Development tools
    "vscode",
    "android-studio",
    "flutter",
    "android-tools",
    "git",
    # Browser
    "brave",
    # System tools
    "brightnessctl",
    "pamixer",
    "networkmanagerapplet",
    "waybar",
    "wofi",
    "dunst",
    # Terminal
    "kitty",
    "zsh",
    "oh-my-zsh",
    # Additional utilities
    "xdg-utils",
    "xdg-desktop-portal-hyprland",
    "polkit-kde-agent",
]


class ProvisionConfig(BaseModel):
    """Validated nixdesk.yml contents."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    # ── Identity / policy ────────────────────────────────────────
    privilege: PrivilegePolicy = "forbid-root"

    # ── System layer ─────────────────────────────────────────────
    package_frontend: PackageFrontend = "nala"
    system_packages: list[str] = Field(default_factory=lambda: list(DEFAULT_SYSTEM_PACKAGES))
    gpu: GpuSetting = "auto"
    nvidia_packages: list[str] = Field(default_factory=lambda: list(DEFAULT_NVIDIA_PACKAGES))
    display_manager: str = "sddm"

    # ── Nix layer ────────────────────────────────────────────────
    nix_install: NixInstallMode = "daemon"
    nix_installer_url: str = "https://nixos.org/nix/install"
    home_manager_channel: str = (
        "https://github.com/nix-community/home-manager/archive/master.tar.gz"
    )
    nixpkgs_branch: str = "nixos-unstable"
    home_manager_branch: str = ""
    state_version: str = "23.11"
    packages: list[str] = Field(default_factory=lambda: list(DEFAULT_HOME_PACKAGES))
    dev_shell: bool = False

    # ── Desktop ──────────────────────────────────────────────────
    git_name: str = ""
    git_email: str = ""
    monitor: str = ",preferred,auto,1"
    keyboard_layout: str = "us"
    terminal: str = "kitty"
    shell_rc: str = "~/.zshrc"

    # ── Behaviour ────────────────────────────────────────────────
    backup: bool = True
    activate: bool = True
    audit: bool = True

    def template_settings(self) -> dict[str, str]:
        """Placeholder values contributed by configuration.

        Git identity falls back to the profile's user in the renderer
        when left empty here.
        """
        packages = "\n".join(f"    {p}" for p in self.packages)
        hm_url = "github:nix-community/home-manager"
        if self.home_manager_branch:
            hm_url = f"{hm_url}/{self.home_manager_branch}"
        return {
            "NIXPKGS_BRANCH": self.nixpkgs_branch,
            "HOME_MANAGER_URL": hm_url,
            "STATE_VERSION": self.state_version,
            "HOME_PACKAGES": packages,
            "GIT_NAME": self.git_name,
            "GIT_EMAIL": self.git_email,
            "MONITOR": self.monitor,
            "KB_LAYOUT": self.keyboard_layout,
            "TERMINAL": self.terminal,
        }

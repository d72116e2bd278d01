"""
EnvironmentProfile — runtime facts gathered once per process.

Built by ``services.detection.build_profile()`` at startup and passed
read-only to every step, template and adapter that needs it. The model
is frozen: nothing downstream can mutate it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict

GpuVendor = Literal["nvidia", "amd", "intel", "none"]

# Where the Nix installer drops its profile scripts and binaries
NIX_DAEMON_PROFILE = "/nix/var/nix/profiles/default"
NIX_ROOT_CHANNELS = "/nix/var/nix/profiles/per-user/root/channels"


class EnvironmentProfile(BaseModel):
    """Immutable snapshot of who and what we are provisioning."""

    model_config = ConfigDict(frozen=True)

    user: str
    home: str
    uid: int
    is_root: bool = False
    sudo_available: bool = False
    gpu: GpuVendor = "none"
    shell: str = ""
    nix_path: str = ""
    path: str = ""

    @property
    def has_nvidia(self) -> bool:
        return self.gpu == "nvidia"

    def expand(self, path: str) -> Path:
        """Expand a leading ``~`` against this profile's home, not the process's."""
        if path == "~":
            return Path(self.home)
        if path.startswith("~/"):
            return Path(self.home) / path[2:]
        return Path(path)

    def nix_bin_dirs(self) -> list[str]:
        return [
            f"{self.home}/.nix-profile/bin",
            f"{NIX_DAEMON_PROFILE}/bin",
        ]

    def nix_env(self) -> dict[str, str]:
        """Environment overlay that makes a fresh Nix install usable.

        Stands in for sourcing ``nix-daemon.sh`` / ``nix.sh``: prepends
        the Nix profile bin dirs to PATH and points NIX_PATH at the user
        and root channel directories.
        """
        path_parts = self.nix_bin_dirs()
        if self.path:
            path_parts.append(self.path)

        nix_path = f"{self.home}/.nix-defexpr/channels:{NIX_ROOT_CHANNELS}"
        if self.nix_path:
            nix_path = f"{nix_path}:{self.nix_path}"

        return {
            "PATH": ":".join(path_parts),
            "NIX_PATH": nix_path,
        }

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["has_nvidia"] = self.has_nvidia
        return data

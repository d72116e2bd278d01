"""
Tests for environment detection and the EnvironmentProfile model.
"""

from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from nixdesk.core.models.profile import EnvironmentProfile
from nixdesk.core.services.detection import (
    build_profile,
    detect_gpu,
    gpu_vendor_from_lspci,
)

NVIDIA_LAPTOP = """\
00:02.0 VGA compatible controller [0300]: Intel Corporation UHD Graphics 630 [8086:3e9b]
01:00.0 3D controller [0302]: NVIDIA Corporation TU117M [GeForce GTX 1650 Mobile] [10de:1f91] (rev a1)
00:1f.3 Audio device [0403]: Intel Corporation Cannon Lake PCH cAVS [8086:a348] (rev 10)
"""

AMD_DESKTOP = """\
0a:00.0 VGA compatible controller [0300]: Advanced Micro Devices, Inc. [AMD/ATI] Navi 21 [1002:73bf] (rev c1)
"""

INTEL_ONLY = """\
00:02.0 VGA compatible controller [0300]: Intel Corporation Alder Lake-P GT2 [8086:46a6] (rev 0c)
"""


# ── GPU Detection Tests ─────────────────────────────────────────────


class TestGpuVendor:
    def test_nvidia_wins_on_hybrid(self):
        assert gpu_vendor_from_lspci(NVIDIA_LAPTOP) == "nvidia"

    def test_amd(self):
        assert gpu_vendor_from_lspci(AMD_DESKTOP) == "amd"

    def test_intel(self):
        assert gpu_vendor_from_lspci(INTEL_ONLY) == "intel"

    def test_vendor_id_only(self):
        line = "01:00.0 VGA compatible controller [0300]: Device [10de:2684]\n"
        assert gpu_vendor_from_lspci(line) == "nvidia"

    def test_non_display_devices_ignored(self):
        line = "00:1f.3 Audio device [0403]: NVIDIA Corporation HDMI Audio [10de:10fa]\n"
        assert gpu_vendor_from_lspci(line) == "none"

    def test_empty(self):
        assert gpu_vendor_from_lspci("") == "none"

    def test_lspci_missing(self):
        with patch("nixdesk.core.services.detection.shutil.which", return_value=None):
            assert detect_gpu() == "none"

    def test_lspci_output_parsed(self):
        completed = MagicMock(stdout=AMD_DESKTOP)
        with patch("nixdesk.core.services.detection.shutil.which", return_value="/usr/bin/lspci"), \
             patch("nixdesk.core.services.detection.subprocess.run", return_value=completed):
            assert detect_gpu() == "amd"

    def test_lspci_error(self):
        with patch("nixdesk.core.services.detection.shutil.which", return_value="/usr/bin/lspci"), \
             patch("nixdesk.core.services.detection.subprocess.run", side_effect=OSError):
            assert detect_gpu() == "none"


# ── Profile Building Tests ──────────────────────────────────────────


class TestBuildProfile:
    def _environ(self, tmp_path, with_sudo=True):
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        if with_sudo:
            sudo = bin_dir / "sudo"
            sudo.write_text("#!/bin/sh\n")
            sudo.chmod(0o755)
        return {
            "USER": "alice",
            "HOME": "/home/alice/",
            "SHELL": "/bin/zsh",
            "PATH": str(bin_dir),
            "NIX_PATH": "nixpkgs=/somewhere",
        }

    def test_from_environment(self, tmp_path):
        profile = build_profile(gpu="none", environ=self._environ(tmp_path), uid=1000)
        assert profile.user == "alice"
        assert profile.home == "/home/alice"
        assert profile.shell == "/bin/zsh"
        assert profile.uid == 1000
        assert not profile.is_root
        assert profile.sudo_available
        assert profile.nix_path == "nixpkgs=/somewhere"

    def test_root(self, tmp_path):
        profile = build_profile(gpu="none", environ=self._environ(tmp_path), uid=0)
        assert profile.is_root

    def test_no_sudo(self, tmp_path):
        environ = self._environ(tmp_path, with_sudo=False)
        assert not build_profile(gpu="none", environ=environ, uid=1000).sudo_available

    def test_configured_gpu_skips_detection(self, tmp_path):
        with patch("nixdesk.core.services.detection.detect_gpu") as detect:
            profile = build_profile(gpu="nvidia", environ=self._environ(tmp_path), uid=1000)
        detect.assert_not_called()
        assert profile.has_nvidia

    def test_auto_gpu_is_detected(self, tmp_path):
        with patch("nixdesk.core.services.detection.detect_gpu", return_value="intel"):
            profile = build_profile(gpu="auto", environ=self._environ(tmp_path), uid=1000)
        assert profile.gpu == "intel"

    def test_passwd_fallback(self):
        entry = MagicMock(pw_name="bob", pw_dir="/home/bob", pw_shell="/bin/bash")
        with patch("nixdesk.core.services.detection.pwd.getpwuid", return_value=entry):
            profile = build_profile(gpu="none", environ={"PATH": ""}, uid=1001)
        assert profile.user == "bob"
        assert profile.home == "/home/bob"
        assert profile.shell == "/bin/bash"

    def test_unknown_uid(self):
        with patch("nixdesk.core.services.detection.pwd.getpwuid", side_effect=KeyError):
            profile = build_profile(gpu="none", environ={"PATH": ""}, uid=4242)
        assert profile.user == ""


# ── Profile Model Tests ─────────────────────────────────────────────


class TestEnvironmentProfile:
    def test_frozen(self, profile):
        with pytest.raises(ValidationError):
            profile.user = "mallory"

    def test_expand(self, profile, home):
        assert profile.expand("~/.zshrc") == home / ".zshrc"
        assert profile.expand("~") == home
        assert str(profile.expand("/etc/nix/nix.conf")) == "/etc/nix/nix.conf"

    def test_nix_env(self):
        profile = EnvironmentProfile(
            user="alice", home="/home/alice", uid=1000,
            path="/usr/bin", nix_path="nixpkgs=/x",
        )
        env = profile.nix_env()
        assert env["PATH"] == (
            "/home/alice/.nix-profile/bin:/nix/var/nix/profiles/default/bin:/usr/bin"
        )
        assert env["NIX_PATH"] == (
            "/home/alice/.nix-defexpr/channels:"
            "/nix/var/nix/profiles/per-user/root/channels:nixpkgs=/x"
        )

    def test_nix_env_without_inherited_values(self):
        env = EnvironmentProfile(user="a", home="/h", uid=1).nix_env()
        assert env["PATH"] == "/h/.nix-profile/bin:/nix/var/nix/profiles/default/bin"
        assert not env["NIX_PATH"].endswith(":")

    def test_to_dict(self, nvidia_profile):
        data = nvidia_profile.to_dict()
        assert data["user"] == "alice"
        assert data["gpu"] == "nvidia"
        assert data["has_nvidia"] is True

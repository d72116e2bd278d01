"""
Environment detection — build the EnvironmentProfile once at startup.

Read-only probes: effective uid, $USER/$HOME, sudo on PATH, lspci for
the GPU vendor. The result is frozen and threaded through every step.
"""

from __future__ import annotations

import logging
import os
import pwd
import re
import shutil
import subprocess
from collections.abc import Mapping

from nixdesk.core.models.config import GpuSetting
from nixdesk.core.models.profile import EnvironmentProfile, GpuVendor

logger = logging.getLogger(__name__)


# ── GPU helpers ────────────────────────────────────────────

def _extract_pci_id(line: str) -> str | None:
    """Extract PCI vendor:device ID from an lspci line."""
    m = re.search(r"\[([0-9a-f]{4}:[0-9a-f]{4})\]", line, re.IGNORECASE)
    return m.group(1) if m else None


def gpu_vendor_from_lspci(output: str) -> GpuVendor:
    """Classify the first display controller in ``lspci -nn`` output.

    NVIDIA wins over an integrated GPU listed first: hybrid laptops
    still need the NVIDIA environment.
    """
    vendors: list[GpuVendor] = []
    for line in output.splitlines():
        if "VGA" not in line and "3D controller" not in line:
            continue
        pci_id = (_extract_pci_id(line) or "").lower()
        words = set(re.findall(r"[A-Z]+", line.upper()))
        if "NVIDIA" in words or pci_id.startswith("10de:"):
            vendors.append("nvidia")
        elif words & {"AMD", "ATI"} or pci_id.startswith("1002:"):
            vendors.append("amd")
        elif "INTEL" in words or pci_id.startswith("8086:"):
            vendors.append("intel")

    if "nvidia" in vendors:
        return "nvidia"
    return vendors[0] if vendors else "none"


def detect_gpu() -> GpuVendor:
    """Probe lspci for the GPU vendor. ``none`` when lspci is unavailable."""
    if not shutil.which("lspci"):
        logger.debug("lspci not found; assuming no discrete GPU")
        return "none"
    try:
        r = subprocess.run(
            ["lspci", "-nn"],
            capture_output=True, text=True, timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("lspci failed: %s", e)
        return "none"
    return gpu_vendor_from_lspci(r.stdout)


# ── Profile ────────────────────────────────────────────────

def _passwd_entry(uid: int) -> pwd.struct_passwd | None:
    try:
        return pwd.getpwuid(uid)
    except KeyError:
        return None


def build_profile(
    gpu: GpuSetting = "auto",
    environ: Mapping[str, str] | None = None,
    uid: int | None = None,
) -> EnvironmentProfile:
    """Gather the runtime facts for this process.

    Args:
        gpu: Configured GPU setting. ``auto`` probes the hardware.
        environ: Environment to read (defaults to ``os.environ``).
        uid: Effective uid override (defaults to ``os.geteuid()``).

    Returns:
        A frozen EnvironmentProfile.
    """
    env = os.environ if environ is None else environ
    euid = os.geteuid() if uid is None else uid
    entry = _passwd_entry(euid)

    user = env.get("USER") or (entry.pw_name if entry else "")
    home = env.get("HOME") or (entry.pw_dir if entry else "")
    shell = env.get("SHELL") or (entry.pw_shell if entry else "")

    vendor: GpuVendor = detect_gpu() if gpu == "auto" else gpu

    profile = EnvironmentProfile(
        user=user,
        home=home.rstrip("/") or home,
        uid=euid,
        is_root=euid == 0,
        sudo_available=shutil.which("sudo", path=env.get("PATH")) is not None,
        gpu=vendor,
        shell=shell,
        nix_path=env.get("NIX_PATH", ""),
        path=env.get("PATH", ""),
    )
    logger.debug("Profile: %s", profile.model_dump())
    return profile

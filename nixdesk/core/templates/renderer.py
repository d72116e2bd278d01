"""
Template renderer — named templates → configuration text.

Template files live in ``files/`` next to this module and are real
Nix / Hyprland / shell / INI files with two extensions:

  1. Conditional blocks:  # __IF_FLAG__ / # __IF_NOT_FLAG__ / # __ENDIF__
  2. Placeholder substitution:  __PLACEHOLDER_NAME__

Rendering is pure: the output depends only on the template text, the
profile and the settings. Same inputs, byte-identical output.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path

from nixdesk.core.errors import TemplateError
from nixdesk.core.models.config import ProvisionConfig
from nixdesk.core.models.profile import EnvironmentProfile

# Bump when a template's output changes shape.
TEMPLATE_VERSION = 2

TEMPLATES_DIR = Path(__file__).parent / "files"

TEMPLATE_IDS: tuple[str, ...] = (
    "flake_nix",
    "home_nix",
    "shell_nix",
    "hyprland_conf",
    "start_hyprland",
    "hyprland_desktop",
    "nix_conf",
    "android_env",
)

# Words separated by single underscores, wrapped in double underscores.
# Leaves shell names like __GLX_VENDOR_LIBRARY_NAME alone.
_PLACEHOLDER_RE = re.compile(r"__([A-Z][A-Z0-9]*(?:_[A-Z0-9]+)*)__")
_IF_RE = re.compile(r"#[ \t]*__IF_(?!NOT_)(\w+?)__[ \t]*\n(.*?)#[ \t]*__ENDIF__[ \t]*\n", re.DOTALL)
_IF_NOT_RE = re.compile(r"#[ \t]*__IF_NOT_(\w+?)__[ \t]*\n(.*?)#[ \t]*__ENDIF__[ \t]*\n", re.DOTALL)


def load_template(template_id: str) -> str:
    """Read the raw text of a named template."""
    if template_id not in TEMPLATE_IDS:
        raise TemplateError(
            f"Unknown template '{template_id}'. Known: {', '.join(TEMPLATE_IDS)}"
        )
    path = TEMPLATES_DIR / f"{template_id}.tmpl"
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise TemplateError(f"Cannot read template '{template_id}': {e}") from e


def template_values(
    profile: EnvironmentProfile,
    settings: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge profile facts and configuration into one placeholder table."""
    if settings is None:
        settings = ProvisionConfig().template_settings()

    values = dict(settings)
    values["USER"] = profile.user
    values["HOME"] = profile.home

    # Git identity defaults to the login name
    if not values.get("GIT_NAME"):
        values["GIT_NAME"] = profile.user
    if not values.get("GIT_EMAIL") and profile.user:
        values["GIT_EMAIL"] = f"{profile.user}@localhost"

    return values


def template_flags(profile: EnvironmentProfile) -> dict[str, bool]:
    return {"NVIDIA": profile.has_nvidia}


def process_template(
    content: str,
    flags: Mapping[str, bool],
    values: Mapping[str, str],
) -> str:
    """Apply conditional blocks, then substitute placeholders.

    Unknown flags count as disabled. Every placeholder left after the
    conditional pass must have a non-empty value.
    """
    changed = True
    while changed:
        changed = False

        def _replace_if(m: re.Match) -> str:
            nonlocal changed
            changed = True
            return m.group(2) if flags.get(m.group(1), False) else ""

        content = _IF_RE.sub(_replace_if, content)

        def _replace_if_not(m: re.Match) -> str:
            nonlocal changed
            changed = True
            return "" if flags.get(m.group(1), False) else m.group(2)

        content = _IF_NOT_RE.sub(_replace_if_not, content)

    missing = sorted(
        {name for name in _PLACEHOLDER_RE.findall(content) if not values.get(name)}
    )
    if missing:
        raise TemplateError(f"Missing substitution value(s): {', '.join(missing)}")

    content = _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], content)

    # Clean up empty lines left by removed blocks (max 2 consecutive)
    return re.sub(r"\n{3,}", "\n\n", content)


def render(
    template_id: str,
    profile: EnvironmentProfile,
    settings: Mapping[str, str] | None = None,
) -> str:
    """Render a named template for a profile.

    Args:
        template_id: One of ``TEMPLATE_IDS``.
        profile: The environment profile (user, home, hardware).
        settings: Placeholder values from configuration. Defaults to
            ``ProvisionConfig()`` defaults.

    Returns:
        The rendered text.

    Raises:
        TemplateError: Unknown template or a required value is absent.
    """
    content = load_template(template_id)
    try:
        return process_template(
            content,
            template_flags(profile),
            template_values(profile, settings),
        )
    except TemplateError as e:
        raise TemplateError(f"{template_id}: {e}") from e

"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from nixdesk.core.models.profile import EnvironmentProfile


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests away from the real config, ledger and cwd."""
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    monkeypatch.setenv("HOME", str(tmp_path / "fake-home"))
    monkeypatch.delenv("NIXDESK_CONFIG", raising=False)
    monkeypatch.delenv("NIXDESK_LOG_FILE", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """A scratch home directory for the provisioned user."""
    path = tmp_path / "home" / "alice"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def profile(home: Path) -> EnvironmentProfile:
    return EnvironmentProfile(
        user="alice",
        home=str(home),
        uid=1000,
        sudo_available=True,
        gpu="none",
        shell="/bin/zsh",
        path="/usr/bin:/bin",
    )


@pytest.fixture
def nvidia_profile(profile: EnvironmentProfile) -> EnvironmentProfile:
    return profile.model_copy(update={"gpu": "nvidia"})


@pytest.fixture
def root_profile(profile: EnvironmentProfile) -> EnvironmentProfile:
    return profile.model_copy(update={"uid": 0, "is_root": True})

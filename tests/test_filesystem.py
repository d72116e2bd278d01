"""
Tests for the artifact writer — atomic writes, backups, elevation.
"""

import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from nixdesk.adapters.mock import MockArtifactWriter, MockCommandRunner
from nixdesk.adapters.shell.filesystem import (
    ArtifactWriter,
    atomic_write,
    backup_path_for,
)
from nixdesk.core.errors import PrivilegedWriteError


def _writer(**kwargs) -> tuple[ArtifactWriter, MockCommandRunner]:
    runner = MockCommandRunner()
    kwargs.setdefault("privileged", False)
    kwargs.setdefault("sudo_available", True)
    return ArtifactWriter(runner, **kwargs), runner


def _backups(path: Path) -> list[Path]:
    return sorted(path.parent.glob(f"{path.name}.bak-*"))


# ── Atomic Write Tests ──────────────────────────────────────────────


class TestAtomicWrite:
    def test_writes_content_and_mode(self, tmp_path):
        target = tmp_path / "bin" / "start-hyprland"
        atomic_write(target, "#!/bin/bash\n", 0o755)

        assert target.read_text() == "#!/bin/bash\n"
        assert stat.S_IMODE(target.stat().st_mode) == 0o755

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / "f.conf"
        target.write_text("old")
        atomic_write(target, "new")
        assert target.read_text() == "new"
        assert list(tmp_path.iterdir()) == [target]

    def test_interrupted_write_keeps_previous_content(self, tmp_path):
        target = tmp_path / "flake.nix"
        target.write_text("previous")

        with patch(
            "nixdesk.adapters.shell.filesystem.os.replace",
            side_effect=KeyboardInterrupt,
        ):
            with pytest.raises(KeyboardInterrupt):
                atomic_write(target, "half-finished")

        assert target.read_text() == "previous"
        assert list(tmp_path.iterdir()) == [target]

    def test_interrupted_write_leaves_no_target(self, tmp_path):
        target = tmp_path / "home.nix"
        with patch(
            "nixdesk.adapters.shell.filesystem.os.replace",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(OSError):
                atomic_write(target, "content")

        assert not target.exists()
        assert list(tmp_path.iterdir()) == []


# ── Backup Tests ────────────────────────────────────────────────────


class TestBackup:
    def test_backup_name_format(self, tmp_path):
        path = tmp_path / "hyprland.conf"
        assert backup_path_for(path, "20240101-120000").name == (
            "hyprland.conf.bak-20240101-120000"
        )

    def test_backup_name_collision(self, tmp_path):
        path = tmp_path / "hyprland.conf"
        (tmp_path / "hyprland.conf.bak-20240101-120000").write_text("x")
        assert backup_path_for(path, "20240101-120000").name == (
            "hyprland.conf.bak-20240101-120000.1"
        )

    def test_existing_file_backed_up_once(self, tmp_path):
        writer, _ = _writer()
        target = tmp_path / "hyprland.conf"
        target.write_text("user edits")

        backup = writer.write(target, "generated", backup=True)

        assert target.read_text() == "generated"
        assert _backups(target) == [backup]
        assert backup.read_text() == "user edits"
        assert backup.name.startswith("hyprland.conf.bak-")

    def test_no_backup_without_existing_file(self, tmp_path):
        writer, _ = _writer()
        target = tmp_path / "hyprland.conf"
        assert writer.write(target, "generated", backup=True) is None
        assert _backups(target) == []

    def test_write_through_symlink(self, tmp_path):
        writer, _ = _writer()
        dotfile = tmp_path / "dotfiles" / "hyprland.conf"
        dotfile.parent.mkdir()
        dotfile.write_text("user edits")
        target = tmp_path / "hyprland.conf"
        target.symlink_to(dotfile)

        backup = writer.write(target, "generated", backup=True)

        assert target.is_symlink()
        assert dotfile.read_text() == "generated"
        assert backup.parent.samefile(dotfile.parent)
        assert backup.read_text() == "user edits"

    def test_no_backup_when_disabled(self, tmp_path):
        writer, _ = _writer()
        target = tmp_path / "flake.nix"
        target.write_text("old")
        assert writer.write(target, "new") is None
        assert _backups(target) == []


# ── Elevated Write Tests ────────────────────────────────────────────


class TestElevatedWrite:
    def test_stages_then_moves_with_sudo(self, tmp_path):
        writer, runner = _writer()
        target = tmp_path / "wayland-sessions" / "hyprland.desktop"

        writer.write(target, "[Desktop Entry]\n", requires_elevation=True)

        assert runner.call_count == 2
        install, move = runner.call_log
        assert install.argv[:4] == ["install", "-D", "-m", "644"]
        assert install.argv[-1] == str(target.with_name(".hyprland.desktop.nixdesk-tmp"))
        assert move.argv == [
            "mv", "-f", str(target.with_name(".hyprland.desktop.nixdesk-tmp")), str(target),
        ]
        assert install.sudo and move.sudo
        # The mock never touches the destination
        assert not target.exists()

    def test_mode_passed_as_octal(self, tmp_path):
        writer, runner = _writer()
        writer.write(tmp_path / "x", "x", mode=0o755, requires_elevation=True)
        assert runner.call_log[0].argv[3] == "755"

    def test_no_sudo_is_permission_error(self, tmp_path):
        writer, runner = _writer(sudo_available=False)
        target = tmp_path / "hyprland.desktop"

        with pytest.raises(PrivilegedWriteError) as exc_info:
            writer.write(target, "x", requires_elevation=True)

        assert isinstance(exc_info.value, PermissionError)
        assert "sudo is not available" in str(exc_info.value)
        assert runner.call_count == 0
        assert not target.exists()

    def test_install_failure(self, tmp_path):
        writer, runner = _writer()
        runner.set_failure("install")
        with pytest.raises(PrivilegedWriteError, match="Could not stage"):
            writer.write(tmp_path / "x", "x", requires_elevation=True)
        assert runner.call_count == 1

    def test_move_failure_cleans_up(self, tmp_path):
        writer, runner = _writer()
        runner.set_failure("mv")
        with pytest.raises(PrivilegedWriteError, match="Could not install"):
            writer.write(tmp_path / "x", "x", requires_elevation=True)
        assert runner.commands[-1].startswith("rm -f")

    def test_elevated_backup_uses_sudo_cp(self, tmp_path):
        writer, runner = _writer()
        target = tmp_path / "nix.conf"
        target.write_text("old")

        backup = writer.write(target, "new", requires_elevation=True, backup=True)

        assert runner.commands[0] == f"cp -p {target} {backup}"

    def test_privileged_process_writes_directly(self, tmp_path):
        writer, runner = _writer(privileged=True, sudo_available=False)
        target = tmp_path / "hyprland.desktop"
        writer.write(target, "x", requires_elevation=True)
        assert target.read_text() == "x"
        assert runner.call_count == 0


# ── Append Tests ────────────────────────────────────────────────────


class TestAppendBlock:
    BLOCK = "# Android SDK\nexport ANDROID_HOME=$HOME/Android/Sdk\n"

    def test_appends_to_existing(self, tmp_path):
        writer, _ = _writer()
        rc = tmp_path / ".zshrc"
        rc.write_text("alias ll='ls -l'")

        assert writer.append_block(rc, self.BLOCK, "ANDROID_HOME") is True
        assert rc.read_text() == "alias ll='ls -l'\n" + self.BLOCK

    def test_second_append_is_noop(self, tmp_path):
        writer, _ = _writer()
        rc = tmp_path / ".zshrc"
        writer.append_block(rc, self.BLOCK, "ANDROID_HOME")
        assert writer.append_block(rc, self.BLOCK, "ANDROID_HOME") is False
        assert rc.read_text().count("export ANDROID_HOME=") == 1

    def test_creates_missing_file(self, tmp_path):
        writer, _ = _writer()
        rc = tmp_path / ".bashrc"
        writer.append_block(rc, self.BLOCK, "ANDROID_HOME")
        assert rc.read_text() == self.BLOCK

    def test_preserves_mode(self, tmp_path):
        writer, _ = _writer()
        rc = tmp_path / ".zshrc"
        rc.write_text("x\n")
        rc.chmod(0o600)
        writer.append_block(rc, self.BLOCK, "ANDROID_HOME")
        assert stat.S_IMODE(rc.stat().st_mode) == 0o600

    def test_keeps_undecodable_bytes(self, tmp_path):
        writer, _ = _writer()
        rc = tmp_path / ".zshrc"
        rc.write_bytes(b"# caf\xe9\nalias ll='ls -l'\n")

        assert writer.append_block(rc, self.BLOCK, "ANDROID_HOME") is True
        assert rc.read_bytes() == b"# caf\xe9\nalias ll='ls -l'\n" + self.BLOCK.encode()

    def test_appends_through_symlink(self, tmp_path):
        writer, _ = _writer()
        dotfile = tmp_path / "dotfiles" / "zshrc"
        dotfile.parent.mkdir()
        dotfile.write_text("alias ll='ls -l'\n")
        rc = tmp_path / ".zshrc"
        rc.symlink_to(dotfile)

        writer.append_block(rc, self.BLOCK, "ANDROID_HOME")

        assert rc.is_symlink()
        assert dotfile.read_text() == "alias ll='ls -l'\n" + self.BLOCK
        assert writer.append_block(rc, self.BLOCK, "ANDROID_HOME") is False


# ── Mock Writer Tests ───────────────────────────────────────────────


class TestMockArtifactWriter:
    def test_records_in_memory(self, tmp_path):
        writer = MockArtifactWriter()
        target = tmp_path / "flake.nix"
        writer.write(target, "content", requires_elevation=True, backup=True)
        assert writer.writes == {target: "content"}
        assert not target.exists()

    def test_append_honours_marker(self, tmp_path):
        writer = MockArtifactWriter()
        rc = tmp_path / ".zshrc"
        assert writer.append_block(rc, "ANDROID_HOME=x\n", "ANDROID_HOME")
        assert not writer.append_block(rc, "ANDROID_HOME=x\n", "ANDROID_HOME")
        assert not rc.exists()

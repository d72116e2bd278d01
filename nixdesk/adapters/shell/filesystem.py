"""
Artifact writer — atomic file writes with optional backup and sudo.

Writes are atomic: content goes to a temp file in the destination
directory, then ``os.replace`` swaps it in. A crash or interrupt
before the rename leaves the target absent or holding its previous
complete content, never a half-written file.

Destinations outside the user's reach (``/usr/share/...``) are staged
in a private temp dir and moved into place through ``sudo``.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from pathlib import Path

from nixdesk.adapters.shell.command import CommandRunner
from nixdesk.core.errors import ExternalCommandError, PrivilegedWriteError

logger = logging.getLogger(__name__)

BACKUP_TIME_FORMAT = "%Y%m%d-%H%M%S"

# Undecodable bytes in user files survive a read/write round trip
TEXT_ERRORS = "surrogateescape"


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors=TEXT_ERRORS)


def follow_link(path: Path) -> Path:
    """The file a symlink points at, so writes land in the link target."""
    return path.resolve() if path.is_symlink() else path


def backup_path_for(path: Path, stamp: str | None = None) -> Path:
    """``<path>.bak-YYYYmmdd-HHMMSS``, with a counter if that name is taken."""
    stamp = stamp or time.strftime(BACKUP_TIME_FORMAT)
    candidate = path.with_name(f"{path.name}.bak-{stamp}")
    n = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}.bak-{stamp}.{n}")
        n += 1
    return candidate


def atomic_write(path: Path, content: str, mode: int = 0o644) -> None:
    """Write ``content`` to ``path`` via temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors=TEXT_ERRORS) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    logger.debug("Wrote %d bytes to %s", len(content), path)


class ArtifactWriter:
    """Materialize generated artifacts on disk.

    Args:
        runner: Command runner used for privileged moves and copies.
        privileged: Whether this process may write anywhere itself.
            Defaults to "effective uid is 0".
        sudo_available: Whether ``sudo`` can be used to elevate.
            Defaults to a PATH lookup through ``runner``.
    """

    def __init__(
        self,
        runner: CommandRunner,
        privileged: bool | None = None,
        sudo_available: bool | None = None,
    ):
        self._runner = runner
        self._privileged = os.geteuid() == 0 if privileged is None else privileged
        self._sudo_available = (
            runner.exists("sudo") if sudo_available is None else sudo_available
        )

    def write(
        self,
        path: Path | str,
        content: str,
        mode: int = 0o644,
        requires_elevation: bool = False,
        backup: bool = False,
    ) -> Path | None:
        """Write ``content`` to ``path``.

        Returns:
            The backup path if a pre-existing file was copied aside.

        Raises:
            PrivilegedWriteError: Elevation needed but unavailable or failed.
            OSError: Plain (unprivileged) write failed.
        """
        path = follow_link(Path(path))
        elevate = requires_elevation and not self._privileged

        if elevate and not self._sudo_available:
            raise PrivilegedWriteError(
                f"Writing {path} requires root and sudo is not available"
            )

        backup_path = None
        if backup and path.exists():
            backup_path = self._backup(path, elevate)

        if elevate:
            self._write_elevated(path, content, mode)
        else:
            atomic_write(path, content, mode)

        logger.info("Wrote %s", path)
        return backup_path

    def append_block(self, path: Path | str, block: str, marker: str) -> bool:
        """Append ``block`` to ``path`` unless ``marker`` is already present.

        The file is rewritten atomically with its previous mode. A
        symlinked file is rewritten at its target and the link is kept.

        Returns:
            True if the block was appended, False if the marker was found.
        """
        path = follow_link(Path(path))
        existing = ""
        mode = 0o644
        if path.exists():
            existing = read_text(path)
            mode = path.stat().st_mode & 0o7777
            if marker in existing:
                logger.debug("Marker %r already in %s", marker, path)
                return False

        if existing and not existing.endswith("\n"):
            existing += "\n"
        atomic_write(path, existing + block, mode)
        logger.info("Appended block to %s", path)
        return True

    # ── Internals ───────────────────────────────────────────────

    def _backup(self, path: Path, elevate: bool) -> Path:
        dest = backup_path_for(path)
        if elevate:
            self._sudo("cp", ["-p", str(path), str(dest)], f"back up {path}")
        else:
            shutil.copy2(path, dest)
        logger.info("Backed up %s → %s", path, dest)
        return dest

    def _write_elevated(self, path: Path, content: str, mode: int) -> None:
        # Stage in a private dir, install next to the target, then rename.
        staging_dir = Path(tempfile.mkdtemp(prefix="nixdesk-"))
        staged = staging_dir / path.name
        remote_tmp = path.with_name(f".{path.name}.nixdesk-tmp")
        try:
            staged.write_text(content, encoding="utf-8", errors=TEXT_ERRORS)
            self._sudo(
                "install",
                ["-D", "-m", format(mode, "o"), str(staged), str(remote_tmp)],
                f"stage {path}",
            )
            try:
                self._sudo("mv", ["-f", str(remote_tmp), str(path)], f"install {path}")
            except PrivilegedWriteError:
                self._runner.run("rm", ["-f", str(remote_tmp)], sudo=True, capture=True)
                raise
        finally:
            shutil.rmtree(staging_dir, ignore_errors=True)

    def _sudo(self, command: str, args: list[str], what: str) -> None:
        try:
            self._runner.check(command, args, sudo=True)
        except ExternalCommandError as e:
            raise PrivilegedWriteError(f"Could not {what}: {e}") from e

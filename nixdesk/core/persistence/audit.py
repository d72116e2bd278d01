"""
Audit ledger — append-only history of provisioning runs.

One NDJSON line per real run (dry-runs and mock runs are not recorded),
stored under the user's state directory:

    $XDG_STATE_HOME/nixdesk/audit.ndjson   (default ~/.local/state/...)

Lines are never rewritten. ``nixdesk history`` reads them back.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from nixdesk.core.engine.orchestrator import RunResult
    from nixdesk.core.models.config import ProvisionConfig
    from nixdesk.core.models.profile import EnvironmentProfile

logger = logging.getLogger(__name__)

LEDGER_NAME = "audit.ndjson"


def default_audit_path(home: str | Path | None = None) -> Path:
    """``$XDG_STATE_HOME/nixdesk/audit.ndjson``, else under ``home``."""
    state_home = os.environ.get("XDG_STATE_HOME")
    if state_home:
        return Path(state_home) / "nixdesk" / LEDGER_NAME
    base = Path(home) if home else Path.home()
    return base / ".local" / "state" / "nixdesk" / LEDGER_NAME


def generate_run_id() -> str:
    """``run-YYYYmmdd-HHMMSS-xxxxxx`` (UTC + random suffix)."""
    stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    return f"run-{stamp}-{uuid.uuid4().hex[:6]}"


class AuditEntry(BaseModel):
    """What one provisioning run did, as stored in the ledger."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    user: str = ""

    status: str = ""  # ok | partial | failed
    steps: dict[str, str] = Field(default_factory=dict)  # step name → receipt status
    failed_step: str | None = None
    error: str | None = None
    duration_ms: int = 0

    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_run(
        cls,
        run_id: str,
        run: RunResult,
        profile: EnvironmentProfile,
        config: ProvisionConfig,
        duration_ms: int = 0,
    ) -> AuditEntry:
        failed = run.failed_receipt
        return cls(
            run_id=run_id,
            user=profile.user,
            status=run.status,
            steps={r.step: r.status for r in run.receipts},
            failed_step=failed.step if failed else None,
            error=failed.error if failed else None,
            duration_ms=duration_ms,
            context={
                "gpu": profile.gpu,
                "nix_install": config.nix_install,
                "package_frontend": config.package_frontend,
            },
        )


class AuditLedger:
    """Reads and appends ledger lines.

    An unwritable ledger is logged and otherwise ignored: by the time
    an entry is written the machine has already been changed.
    """

    def __init__(self, path: Path | None = None):
        self.path = path or default_audit_path()

    def append(self, entry: AuditEntry) -> bool:
        """Append ``entry``. Returns False if the ledger could not be written."""
        record = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as ledger:
                ledger.write(record + "\n")
        except OSError as e:
            logger.error("Cannot append to audit ledger %s: %s", self.path, e)
            return False
        logger.debug("Recorded %s in %s", entry.run_id, self.path)
        return True

    def _lines(self) -> Iterator[tuple[int, str]]:
        try:
            with self.path.open("r", encoding="utf-8", errors="replace") as ledger:
                yield from enumerate(ledger, start=1)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error("Cannot read audit ledger %s: %s", self.path, e)

    def entries(self) -> list[AuditEntry]:
        """All readable entries, oldest first. Corrupt lines are skipped."""
        found = []
        for number, raw in self._lines():
            if not raw.strip():
                continue
            try:
                found.append(AuditEntry.model_validate_json(raw))
            except ValidationError as e:
                logger.warning("%s:%d is not a valid entry: %s", self.path, number, e)
        return found

    def recent(self, n: int = 10) -> list[AuditEntry]:
        """The last ``n`` entries, oldest first."""
        return self.entries()[-n:] if n > 0 else []

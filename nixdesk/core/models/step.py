"""
Step, GeneratedArtifact and StepReceipt — the execution contract.

A Step is a unit of work the orchestrator runs in order. Its
precondition is the idempotency guard: when it returns True the action
is skipped and the step is recorded as already satisfied.

Steps hold callables, so they are plain dataclasses. Receipts and
artifacts are data, so they are Pydantic models that serialize
straight into the audit ledger.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

FailurePolicy = Literal["abort", "warn"]
StepStatus = Literal["completed", "skipped", "failed", "warned", "not_attempted"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class Step:
    """An ordered unit of provisioning work.

    Attributes:
        name:         Unique identifier, used in ``requires`` and on the CLI.
        action:       Performs the work. May return a short summary string.
                      Signals failure by raising ``ProvisionError`` / ``OSError``.
        precondition: Returns True when the step's effect is already present.
                      ``None`` means "always run".
        description:  Human-readable label for status lines.
        on_failure:   ``abort`` halts the run; ``warn`` records and continues.
        requires:     Names of steps that must appear (and run) before this one.
    """

    name: str
    action: Callable[[], str | None]
    precondition: Callable[[], bool] | None = None
    description: str = ""
    on_failure: FailurePolicy = "abort"
    requires: tuple[str, ...] = field(default_factory=tuple)

    @property
    def label(self) -> str:
        return self.description or self.name


class GeneratedArtifact(BaseModel):
    """A configuration file rendered from a template.

    Attributes:
        template_id:        Template to render (see ``templates.renderer``).
        path:               Destination path; ``~`` expands against the profile.
        mode:               File permission bits.
        requires_elevation: Destination is outside the user's reach.
        backup:             Copy an existing file aside before overwriting.
    """

    template_id: str
    path: str
    mode: int = 0o644
    requires_elevation: bool = False
    backup: bool = False


class StepReceipt(BaseModel):
    """Outcome of one step in a run.

    Like the adapter receipts this is data, never an exception: the
    orchestrator captures failures here and decides what to do next.
    """

    step: str
    status: StepStatus = "completed"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    guidance: list[str] = Field(default_factory=list)

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Completed or skipped — nothing went wrong."""
        return self.status in ("completed", "skipped")

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def completed(cls, step: str, output: str = "", **kwargs: Any) -> StepReceipt:
        return cls(step=step, status="completed", output=output, **kwargs)

    @classmethod
    def skip(cls, step: str, reason: str = "already satisfied", **kwargs: Any) -> StepReceipt:
        return cls(step=step, status="skipped", output=reason, **kwargs)

    @classmethod
    def failure(cls, step: str, error: str, **kwargs: Any) -> StepReceipt:
        return cls(step=step, status="failed", error=error, **kwargs)

    @classmethod
    def warning(cls, step: str, error: str, **kwargs: Any) -> StepReceipt:
        return cls(step=step, status="warned", error=error, **kwargs)

    @classmethod
    def not_attempted(cls, step: str) -> StepReceipt:
        return cls(step=step, status="not_attempted")

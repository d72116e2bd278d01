"""
Provisioning orchestrator — the central run loop.

Takes an ordered list of steps and an environment profile, checks the
privilege policy once, then walks the steps strictly in order:

    precondition satisfied → skipped
    action succeeds        → completed
    action fails           → failed (abort: halt) / warned (warn: continue)

Fail-fast: once a step fails, every later step is recorded as not
attempted. Nothing is rolled back; side effects stay where they are.

State machine:

    NOT_STARTED → RUNNING → COMPLETED
                          ↘ FAILED
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from nixdesk.core.errors import (
    DependencyMissingError,
    PrivilegeError,
    ProvisionError,
    StepOrderError,
)
from nixdesk.core.models.config import PrivilegePolicy
from nixdesk.core.models.profile import EnvironmentProfile
from nixdesk.core.models.step import Step, StepReceipt

logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunListener:
    """Hook for progress reporting. Override what you need."""

    def step_started(self, step: Step) -> None:
        pass

    def step_finished(self, step: Step, receipt: StepReceipt) -> None:
        pass


@dataclass
class RunResult:
    """Result of one orchestrator run."""

    receipts: list[StepReceipt] = field(default_factory=list)
    dry_run: bool = False

    def _names(self, status: str) -> list[str]:
        return [r.step for r in self.receipts if r.status == status]

    @property
    def completed(self) -> list[str]:
        return self._names("completed")

    @property
    def skipped(self) -> list[str]:
        return self._names("skipped")

    @property
    def failed(self) -> list[str]:
        return self._names("failed")

    @property
    def warned(self) -> list[str]:
        return self._names("warned")

    @property
    def not_attempted(self) -> list[str]:
        return self._names("not_attempted")

    @property
    def failed_receipt(self) -> StepReceipt | None:
        return next((r for r in self.receipts if r.failed), None)

    @property
    def failed_step(self) -> str | None:
        receipt = self.failed_receipt
        return receipt.step if receipt else None

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    @property
    def status(self) -> str:
        if self.failed:
            return "failed"
        if self.warned:
            return "partial"
        return "ok"

    def get(self, step: str) -> StepReceipt | None:
        return next((r for r in self.receipts if r.step == step), None)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "dry_run": self.dry_run,
            "completed": self.completed,
            "skipped": self.skipped,
            "warned": self.warned,
            "failed": self.failed,
            "not_attempted": self.not_attempted,
            "receipts": [r.model_dump(mode="json") for r in self.receipts],
        }


def check_privilege(profile: EnvironmentProfile, policy: PrivilegePolicy) -> None:
    """Enforce the identity policy. Raises ``PrivilegeError`` on violation."""
    if policy == "forbid-root" and profile.is_root:
        raise PrivilegeError(
            "Please do not run as root: run as the desktop user, "
            "sudo is used where needed"
        )
    if policy == "require-root" and not profile.is_root:
        raise PrivilegeError("This run must be executed as root")


def validate_order(steps: Sequence[Step]) -> None:
    """Check step names are unique and every requirement comes earlier.

    A step may not depend on a ``warn`` step: that step is allowed to
    fail without stopping the run, so its effect cannot be relied on.
    """
    seen: dict[str, Step] = {}
    for step in steps:
        if step.name in seen:
            raise StepOrderError(f"Duplicate step name '{step.name}'")
        for req in step.requires:
            if req not in seen:
                raise StepOrderError(
                    f"Step '{step.name}' requires '{req}', which is not declared before it"
                )
            if seen[req].on_failure == "warn":
                raise StepOrderError(
                    f"Step '{step.name}' requires '{req}', which may fail without aborting"
                )
        seen[step.name] = step


class Orchestrator:
    """Run steps in order, once.

    Args:
        privilege: Identity policy checked before the first step.
        dry_run: Evaluate preconditions but never run actions.
        listener: Progress hook (the CLI prints status lines through it).
    """

    def __init__(
        self,
        privilege: PrivilegePolicy = "forbid-root",
        dry_run: bool = False,
        listener: RunListener | None = None,
    ):
        self.privilege = privilege
        self.dry_run = dry_run
        self.listener = listener or RunListener()
        self.state = RunState.NOT_STARTED
        self.current_step: str | None = None

    def run(self, steps: Sequence[Step], profile: EnvironmentProfile) -> RunResult:
        """Execute ``steps`` against ``profile``.

        Raises:
            PrivilegeError: Identity policy violated (nothing executed).
            StepOrderError: Step list is inconsistent (nothing executed).
            RuntimeError: This orchestrator has already run.
        """
        if self.state is not RunState.NOT_STARTED:
            raise RuntimeError(f"Orchestrator already {self.state.value}")

        check_privilege(profile, self.privilege)
        validate_order(steps)

        self.state = RunState.RUNNING
        result = RunResult(dry_run=self.dry_run)
        logger.info("Starting run: %d steps (dry_run=%s)", len(steps), self.dry_run)

        halted = True
        try:
            halted = self._run_steps(steps, result)
        finally:
            # An exception escaping a step still ends the run
            self.current_step = None
            self.state = RunState.FAILED if halted else RunState.COMPLETED
        return result

    def _run_steps(self, steps: Sequence[Step], result: RunResult) -> bool:
        """Run ``steps`` into ``result``. Returns True if the run halted."""
        halted = False
        for step in steps:
            if halted:
                result.receipts.append(StepReceipt.not_attempted(step.name))
                continue

            self.current_step = step.name
            self.listener.step_started(step)
            receipt = self._run_step(step)
            result.receipts.append(receipt)
            self.listener.step_finished(step, receipt)

            marker = {"completed": "✓", "skipped": "⊘", "warned": "!"}.get(receipt.status, "✗")
            logger.info("%s %s → %s", marker, step.name, receipt.status)

            if receipt.failed:
                halted = True
        return halted

    def _run_step(self, step: Step) -> StepReceipt:
        start = time.monotonic()

        try:
            satisfied = step.precondition() if step.precondition else False
            if satisfied:
                receipt = StepReceipt.skip(step.name)
            elif self.dry_run:
                receipt = StepReceipt.skip(step.name, reason="[dry-run] would run")
            else:
                receipt = StepReceipt.completed(step.name, output=step.action() or "")
        except ProvisionError as e:
            receipt = self._failure(step, e)
        except (OSError, UnicodeError) as e:
            receipt = self._failure(step, e)

        receipt.duration_ms = int((time.monotonic() - start) * 1000)
        return receipt

    def _failure(self, step: Step, error: Exception) -> StepReceipt:
        guidance = error.guidance if isinstance(error, DependencyMissingError) else []
        message = str(error) or error.__class__.__name__
        metadata = {"error_type": error.__class__.__name__}

        if step.on_failure == "warn":
            logger.warning("Step %s failed (continuing): %s", step.name, message)
            return StepReceipt.warning(step.name, message, guidance=guidance, metadata=metadata)

        logger.error("Step %s failed: %s", step.name, message)
        return StepReceipt.failure(step.name, message, guidance=guidance, metadata=metadata)

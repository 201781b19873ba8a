"""Per-batch outcome of a save or execute call."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"  # vetoed by a before_* listener
    SKIPPED = "skipped"  # permission denied with throw_on_permission_violation off
    INVALID = "invalid"  # validation returned false


@dataclass
class ModelOutcome:
    """What happened to one model of a batch."""

    name: str
    status: OutcomeStatus
    result: Any = None
    error: str | None = None
    exception: BaseException | None = field(default=None, repr=False)
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class BatchResult:
    """Aggregate result of one orchestrator call.

    ``outcomes`` are kept in completion order, so :attr:`result` is the
    value returned by the last model to finish.
    """

    operation: str
    requested: list[str]
    outcomes: list[ModelOutcome] = field(default_factory=list)
    batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def record(
        self,
        name: str,
        status: OutcomeStatus,
        result: Any = None,
        error: str | None = None,
        exception: BaseException | None = None,
    ) -> ModelOutcome:
        if error is None and exception is not None:
            error = str(exception)
        outcome = ModelOutcome(
            name=name, status=status, result=result, error=error, exception=exception
        )
        self.outcomes.append(outcome)
        return outcome

    def names_with(self, status: OutcomeStatus) -> list[str]:
        return [o.name for o in self.outcomes if o.status is status]

    @property
    def completed(self) -> list[str]:
        return self.names_with(OutcomeStatus.COMPLETED)

    @property
    def failed(self) -> list[str]:
        return self.names_with(OutcomeStatus.FAILED)

    @property
    def cancelled(self) -> list[str]:
        return self.names_with(OutcomeStatus.CANCELLED)

    @property
    def skipped(self) -> list[str]:
        return self.names_with(OutcomeStatus.SKIPPED)

    @property
    def invalid(self) -> list[str]:
        return self.names_with(OutcomeStatus.INVALID)

    @property
    def results(self) -> dict[str, Any]:
        """Return values of completed models by name."""
        return {o.name: o.result for o in self.outcomes if o.status is OutcomeStatus.COMPLETED}

    @property
    def result(self) -> Any:
        """Return value of the last model to complete, or ``None``."""
        for outcome in reversed(self.outcomes):
            if outcome.status is OutcomeStatus.COMPLETED:
                return outcome.result
        return None

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging."""
        return {
            "batch_id": self.batch_id,
            "operation": self.operation,
            "requested": list(self.requested),
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "invalid": self.invalid,
        }


__all__ = ["OutcomeStatus", "ModelOutcome", "BatchResult"]

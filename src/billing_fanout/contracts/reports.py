"""Structured reports emitted to the observability collaborator.

Failed batches and failed executions are always surfaced through one of
these, never dropped. Report sinks live in billing_fanout.telemetry.
"""

from dataclasses import dataclass, field
from datetime import datetime

from billing_fanout.contracts.enums import (
    ExecutionStatus,
    FlushReason,
    TransformErrorKind,
    WorkflowErrorKind,
    WorkflowStep,
)


@dataclass(frozen=True, slots=True)
class TransformRejected:
    """An inbound envelope was malformed and dropped without touching either path."""

    event_id: str | None
    kind: TransformErrorKind
    field: str
    detail: str


@dataclass(frozen=True, slots=True)
class TimeAnomalyDetected:
    """received_datetime precedes requested_datetime. Logged, not rejected."""

    transaction_id: str
    received_datetime: str
    requested_datetime: str


@dataclass(frozen=True, slots=True)
class ArchiveBackpressure:
    """The archiver refused an append because its queue was saturated."""

    transaction_id: str
    capacity: int
    pending: int


@dataclass(frozen=True, slots=True)
class FlushReport:
    """Result of flushing one archive batch.

    succeeded is True when every object of the batch reached its destination,
    even if some records were diverted to the error destination.
    """

    batch_id: str
    reason: FlushReason
    flushed_at: datetime
    partition: str
    record_count: int
    converted_count: int
    error_count: int
    backup_count: int
    object_keys: tuple[str, ...] = ()
    succeeded: bool = True
    requeued: bool = False


@dataclass(frozen=True, slots=True)
class BatchFailure:
    """A batch exhausted its write retries.

    fatal=False means it was re-queued once; fatal=True means it is held for
    operator intervention.
    """

    batch_id: str
    attempts: int
    error: str
    pending_keys: tuple[str, ...]
    fatal: bool


@dataclass(frozen=True, slots=True)
class ExecutionReport:
    """Terminal status of one WorkflowExecution."""

    execution_id: str
    transaction_id: str
    status: ExecutionStatus
    last_step: WorkflowStep
    started_at: datetime
    finished_at: datetime
    trace: tuple[WorkflowStep, ...] = field(default=())
    error_kind: WorkflowErrorKind | None = None
    error_message: str | None = None
    pending_publish: bool = False


Report = TransformRejected | TimeAnomalyDetected | ArchiveBackpressure | FlushReport | BatchFailure | ExecutionReport

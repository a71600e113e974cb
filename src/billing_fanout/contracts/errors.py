"""Exception taxonomy for the fan-out pipeline.

Every failure that crosses a component boundary is one of these. Callers
decide isolation: per-record and per-event failures are turned into reports,
only destination unavailability escalates.
"""

from __future__ import annotations

from billing_fanout.contracts.enums import ErrorOutputType, TransformErrorKind, WorkflowErrorKind


class FanoutError(Exception):
    """Base class for all pipeline errors."""


class TransformError(FanoutError):
    """Raised when a raw envelope cannot be mapped to a TransactionEvent.

    Input is malformed: the event is dropped with a diagnostic and never retried.

    Attributes:
        kind: MISSING_FIELD or TYPE_MISMATCH
        field: Canonical field name that failed
        detail: Human-readable explanation
    """

    def __init__(self, kind: TransformErrorKind, field: str, detail: str) -> None:
        self.kind = kind
        self.field = field
        self.detail = detail
        super().__init__(f"{kind.value} on {field!r}: {detail}")

    @classmethod
    def missing(cls, field: str, path: str) -> TransformError:
        return cls(TransformErrorKind.MISSING_FIELD, field, f"required value at {path} is absent or empty")

    @classmethod
    def mismatch(cls, field: str, detail: str) -> TransformError:
        return cls(TransformErrorKind.TYPE_MISMATCH, field, detail)


class Backpressure(FanoutError):
    """Raised by the archiver when its pending queue is at capacity.

    The caller should retry with backoff. Nothing was enqueued.
    """

    def __init__(self, capacity: int, pending: int) -> None:
        self.capacity = capacity
        self.pending = pending
        super().__init__(f"archive queue saturated ({pending}/{capacity} records pending)")


class ConversionError(FanoutError):
    """Raised when a single record fails schema-validated conversion.

    Isolated to the error destination; never fails the batch.
    """

    def __init__(self, reason: str, *, column: str | None = None, output_type: ErrorOutputType = ErrorOutputType.CONVERSION) -> None:
        self.reason = reason
        self.column = column
        self.output_type = output_type
        super().__init__(reason if column is None else f"{column}: {reason}")


class DestinationWriteError(FanoutError):
    """Raised when an object cannot be written to a destination.

    Batch-level and retryable.
    """

    def __init__(self, destination: str, key: str, cause: BaseException | None = None) -> None:
        self.destination = destination
        self.key = key
        self.cause = cause
        message = f"write to {destination}:{key} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class FatalBatchError(FanoutError):
    """A batch exhausted its retries and its single re-queue.

    Held for operator intervention, never discarded.
    """

    def __init__(self, batch_id: str, attempts: int, last_error: BaseException) -> None:
        self.batch_id = batch_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"batch {batch_id} failed after {attempts} attempts: {last_error}")


class PublishError(FanoutError):
    """Raised by a publisher adapter when the bus rejects an entry."""

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True) -> None:
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class StoreError(FanoutError):
    """Raised by a key-value store adapter when a put fails."""


class WorkflowStepError(FanoutError):
    """A workflow step failed and the execution transitioned to FAILED.

    WRITE_RECORD_FAILED blocks any publish attempt. PUBLISH_FAILED leaves the
    already-committed record in place; only the publish step is replayed.
    """

    def __init__(self, kind: WorkflowErrorKind, transaction_id: str, cause: BaseException) -> None:
        self.kind = kind
        self.transaction_id = transaction_id
        self.cause = cause
        super().__init__(f"{kind.value} for transaction {transaction_id}: {cause}")

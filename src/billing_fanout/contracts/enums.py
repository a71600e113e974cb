"""All status codes, steps, and kinds used across subsystem boundaries."""

from enum import StrEnum


class TransformErrorKind(StrEnum):
    """Why an inbound envelope could not become a TransactionEvent."""

    MISSING_FIELD = "missing_field"
    TYPE_MISMATCH = "type_mismatch"


class WorkflowStep(StrEnum):
    """States of the per-transaction workflow state machine.

    START -> WRITE_RECORD -> PUBLISH_PROCESSED -> DONE, with FAILED
    reachable from either task state.
    """

    START = "start"
    WRITE_RECORD = "write_record"
    PUBLISH_PROCESSED = "publish_processed"
    DONE = "done"
    FAILED = "failed"


class ExecutionStatus(StrEnum):
    """Status of a WorkflowExecution."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class WorkflowErrorKind(StrEnum):
    """Which workflow step failed."""

    WRITE_RECORD_FAILED = "write_record_failed"
    PUBLISH_FAILED = "publish_failed"


class FlushReason(StrEnum):
    """What caused an archive batch to be flushed."""

    SIZE = "size"
    INTERVAL = "interval"
    MANUAL = "manual"
    SHUTDOWN = "shutdown"


class ErrorOutputType(StrEnum):
    """Failure category used as a path segment in the error destination."""

    CONVERSION = "conversion"
    BACKUP = "backup"


class DispatchStatus(StrEnum):
    """Outcome of a single Router.dispatch() call."""

    DISPATCHED = "dispatched"
    REJECTED = "rejected"
    SKIPPED = "skipped"

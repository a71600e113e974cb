"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
billing_fanout.core.config.
"""

from billing_fanout.contracts.enums import (
    DispatchStatus,
    ErrorOutputType,
    ExecutionStatus,
    FlushReason,
    TransformErrorKind,
    WorkflowErrorKind,
    WorkflowStep,
)
from billing_fanout.contracts.errors import (
    Backpressure,
    ConversionError,
    DestinationWriteError,
    FanoutError,
    FatalBatchError,
    PublishError,
    StoreError,
    TransformError,
    WorkflowStepError,
)
from billing_fanout.contracts.events import TRANSACTION_FIELDS, ProcessedEvent, TransactionEvent
from billing_fanout.contracts.reports import (
    ArchiveBackpressure,
    BatchFailure,
    ExecutionReport,
    FlushReport,
    Report,
    TimeAnomalyDetected,
    TransformRejected,
)

__all__ = [
    "TRANSACTION_FIELDS",
    "ArchiveBackpressure",
    "Backpressure",
    "BatchFailure",
    "ConversionError",
    "DestinationWriteError",
    "DispatchStatus",
    "ErrorOutputType",
    "ExecutionReport",
    "ExecutionStatus",
    "FanoutError",
    "FatalBatchError",
    "FlushReason",
    "FlushReport",
    "ProcessedEvent",
    "PublishError",
    "Report",
    "StoreError",
    "TimeAnomalyDetected",
    "TransactionEvent",
    "TransformError",
    "TransformErrorKind",
    "TransformRejected",
    "WorkflowErrorKind",
    "WorkflowStep",
    "WorkflowStepError",
]

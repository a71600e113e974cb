# src/billing_fanout/engine/router.py
"""Router: fan one inbound envelope out to the archiver and the workflow.

The two deliveries are independent. The workflow run is submitted to a
thread pool first, then the record is appended to the archiver inline
(append is bounded and never blocks past its enqueue timeout). Neither
path's failure is visible to the other.

A malformed envelope short-circuits before either path is touched.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from billing_fanout.contracts.enums import DispatchStatus, ExecutionStatus
from billing_fanout.contracts.errors import Backpressure, TransformError
from billing_fanout.contracts.reports import ArchiveBackpressure, TimeAnomalyDetected, TransformRejected
from billing_fanout.engine.transformer import envelope_id, parse_envelope, transform
from billing_fanout.telemetry import counters as names

if TYPE_CHECKING:
    from billing_fanout.contracts.events import TransactionEvent
    from billing_fanout.core.config import EventBusSettings
    from billing_fanout.engine.archiver import BatchArchiver
    from billing_fanout.engine.workflow import WorkflowExecution, WorkflowExecutor
    from billing_fanout.telemetry.counters import DeliveryCounters
    from billing_fanout.telemetry.reporter import ReportSink

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    """What happened to one envelope at dispatch time.

    workflow resolves to the finished WorkflowExecution; archive_error is set
    when the archiver refused the record.
    """

    status: DispatchStatus
    event: TransactionEvent | None = None
    transform_error: TransformError | None = None
    archive_error: Exception | None = None
    workflow: Future[WorkflowExecution] | None = None


class Router:
    def __init__(
        self,
        archiver: BatchArchiver,
        executor: WorkflowExecutor,
        pool: ThreadPoolExecutor,
        *,
        event_bus: EventBusSettings,
        counters: DeliveryCounters,
        reporter: ReportSink,
    ) -> None:
        self._archiver = archiver
        self._executor = executor
        self._pool = pool
        self._event_bus = event_bus
        self._counters = counters
        self._reporter = reporter

    def matches(self, envelope: Mapping[str, Any]) -> bool:
        """Event pattern: source and detail-type must match when present."""
        source = envelope.get("source")
        if source is not None and source != self._event_bus.source:
            return False
        detail_type = envelope.get("detail-type")
        return detail_type is None or detail_type == self._event_bus.initiated_detail_type

    def dispatch(self, raw: Mapping[str, Any] | str | bytes, cancel: threading.Event | None = None) -> DispatchOutcome:
        try:
            envelope = parse_envelope(raw)
            if not self.matches(envelope):
                self._counters.increment(names.SKIPPED)
                logger.debug("Envelope does not match event pattern", event_id=envelope_id(envelope))
                return DispatchOutcome(DispatchStatus.SKIPPED)
            event = transform(envelope)
        except TransformError as e:
            self._counters.increment(names.REJECTED)
            self._reporter.report(TransformRejected(event_id=envelope_id(raw), kind=e.kind, field=e.field, detail=e.detail))
            return DispatchOutcome(DispatchStatus.REJECTED, transform_error=e)

        self._counters.increment(names.DISPATCHED)
        if event.has_time_anomaly:
            self._counters.increment(names.TIME_ANOMALIES)
            self._reporter.report(
                TimeAnomalyDetected(
                    transaction_id=event.transaction_id,
                    received_datetime=event.received_datetime,
                    requested_datetime=event.requested_datetime,
                )
            )

        future = self._submit_workflow(event, cancel)
        archive_error = self._archive(event)
        return DispatchOutcome(DispatchStatus.DISPATCHED, event=event, archive_error=archive_error, workflow=future)

    def _submit_workflow(self, event: TransactionEvent, cancel: threading.Event | None) -> Future[WorkflowExecution] | None:
        try:
            future = self._pool.submit(self._executor.run, event, cancel)
        except RuntimeError as e:
            # Pool already shut down; the archive path still proceeds
            self._counters.increment(names.WORKFLOW_FAILED)
            logger.error("Workflow submission refused", transaction_id=event.transaction_id, error=str(e))
            return None
        self._counters.increment(names.WORKFLOW_SUBMITTED)
        future.add_done_callback(self._on_workflow_done)
        return future

    def _on_workflow_done(self, future: Future[WorkflowExecution]) -> None:
        if future.cancelled():
            self._counters.increment(names.WORKFLOW_CANCELLED)
            return
        error = future.exception()
        if error is not None:
            self._counters.increment(names.WORKFLOW_FAILED)
            logger.error("Workflow execution crashed", error=str(error), error_type=type(error).__name__)
            return
        status = future.result().status
        if status is ExecutionStatus.SUCCEEDED:
            self._counters.increment(names.WORKFLOW_SUCCEEDED)
        elif status is ExecutionStatus.CANCELLED:
            self._counters.increment(names.WORKFLOW_CANCELLED)
        else:
            self._counters.increment(names.WORKFLOW_FAILED)

    def _archive(self, event: TransactionEvent) -> Exception | None:
        try:
            self._archiver.append(event)
        except Backpressure as e:
            self._counters.increment(names.ARCHIVE_BACKPRESSURE)
            self._reporter.report(ArchiveBackpressure(transaction_id=event.transaction_id, capacity=e.capacity, pending=e.pending))
            return e
        self._counters.increment(names.ARCHIVE_ACCEPTED)
        return None

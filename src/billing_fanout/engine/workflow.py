# src/billing_fanout/engine/workflow.py
"""WorkflowExecutor: the per-transaction state machine (OLTP path).

    START -> WRITE_RECORD -> PUBLISH_PROCESSED -> DONE
                  |                 |
                  +----> FAILED <---+

PUBLISH_PROCESSED is only entered after WRITE_RECORD returned success for
the same transaction. An execution that fails at PUBLISH_PROCESSED keeps its
record and is held as pending; replay_pending() re-runs only the publish step.
"""

from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from billing_fanout.contracts.enums import ExecutionStatus, WorkflowErrorKind, WorkflowStep
from billing_fanout.contracts.errors import PublishError, StoreError, WorkflowStepError
from billing_fanout.contracts.events import ProcessedEvent, TransactionEvent
from billing_fanout.contracts.reports import ExecutionReport
from billing_fanout.engine.clock import DEFAULT_CLOCK
from billing_fanout.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager

if TYPE_CHECKING:
    from billing_fanout.core.config import EventBusSettings
    from billing_fanout.engine.clock import Clock
    from billing_fanout.plugins.publishers import EventPublisher
    from billing_fanout.plugins.stores import KeyValueStore
    from billing_fanout.telemetry.reporter import ReportSink

logger = structlog.get_logger(__name__)

# Legal transitions. FAILED -> PUBLISH_PROCESSED is the publish replay.
_TRANSITIONS: dict[WorkflowStep, frozenset[WorkflowStep]] = {
    WorkflowStep.START: frozenset({WorkflowStep.WRITE_RECORD}),
    WorkflowStep.WRITE_RECORD: frozenset({WorkflowStep.PUBLISH_PROCESSED, WorkflowStep.FAILED}),
    WorkflowStep.PUBLISH_PROCESSED: frozenset({WorkflowStep.DONE, WorkflowStep.FAILED}),
    WorkflowStep.DONE: frozenset(),
    WorkflowStep.FAILED: frozenset({WorkflowStep.PUBLISH_PROCESSED}),
}


@dataclass
class WorkflowExecution:
    """One run of the state machine for one TransactionEvent.

    Owned by the executor thread running it; not shared between executions.
    """

    event: TransactionEvent
    execution_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    step: WorkflowStep = WorkflowStep.START
    status: ExecutionStatus = ExecutionStatus.RUNNING
    outputs: dict[str, Any] = field(default_factory=dict)
    trace: list[WorkflowStep] = field(default_factory=list)
    error: WorkflowStepError | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    pending_publish: bool = False

    @property
    def transaction_id(self) -> str:
        return self.event.transaction_id

    def transition(self, step: WorkflowStep) -> None:
        if step not in _TRANSITIONS[self.step]:
            raise RuntimeError(f"illegal workflow transition {self.step.value} -> {step.value}")
        if self.step is WorkflowStep.FAILED and not self.pending_publish:
            raise RuntimeError(f"execution {self.execution_id} has no pending publish to replay")
        self.step = step
        self.trace.append(step)

    def to_report(self) -> ExecutionReport:
        assert self.started_at is not None and self.finished_at is not None, "report on a finished execution"
        return ExecutionReport(
            execution_id=self.execution_id,
            transaction_id=self.transaction_id,
            status=self.status,
            last_step=self.step,
            started_at=self.started_at,
            finished_at=self.finished_at,
            trace=tuple(self.trace),
            error_kind=self.error.kind if self.error is not None else None,
            error_message=str(self.error) if self.error is not None else None,
            pending_publish=self.pending_publish,
        )


class WorkflowExecutor:
    """Runs WorkflowExecutions against the shared store and publisher.

    run() is safe to call concurrently; the adapters are the only shared
    collaborators and they are used read-only from the executor's view.
    """

    def __init__(
        self,
        store: KeyValueStore,
        publisher: EventPublisher,
        *,
        event_bus: EventBusSettings,
        retry: RetryManager | None = None,
        reporter: ReportSink | None = None,
        clock: Clock | None = None,
        audit_window: int = 1000,
        name: str = "TransactionProcess",
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._event_bus = event_bus
        self._retry = retry if retry is not None else RetryManager(RetryConfig())
        self._reporter = reporter
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._name = name
        self._lock = threading.Lock()
        self._audit: deque[WorkflowExecution] = deque(maxlen=audit_window)
        self._pending: dict[str, WorkflowExecution] = {}

    @property
    def name(self) -> str:
        return self._name

    def run(self, event: TransactionEvent, cancel: threading.Event | None = None) -> WorkflowExecution:
        """Drive one event to a terminal status.

        Cancellation is honoured only before WriteRecord commits. Once the
        record exists the publish is always attempted.
        """
        execution = WorkflowExecution(event=event, started_at=self._clock.now())
        log = logger.bind(state_machine=self._name, execution_id=execution.execution_id, transaction_id=event.transaction_id)

        if cancel is not None and cancel.is_set():
            execution.status = ExecutionStatus.CANCELLED
            log.info("Execution cancelled before WriteRecord")
            return self._finish(execution)

        execution.transition(WorkflowStep.WRITE_RECORD)
        try:
            self._write_record(execution)
        except Exception as e:
            # Any adapter failure ends the execution; nothing was committed
            cause = e.last_error if isinstance(e, MaxRetriesExceeded) else e
            execution.error = WorkflowStepError(WorkflowErrorKind.WRITE_RECORD_FAILED, event.transaction_id, cause)
            execution.transition(WorkflowStep.FAILED)
            execution.status = ExecutionStatus.FAILED
            log.warning("WriteRecord failed", error=str(cause))
            return self._finish(execution)

        if cancel is not None and cancel.is_set():
            log.info("Cancellation after WriteRecord ignored; publishing")

        self._publish_processed(execution)
        return self._finish(execution)

    def _write_record(self, execution: WorkflowExecution) -> None:
        key = execution.transaction_id
        record = execution.event.to_record()
        self._retry.execute_with_retry(
            lambda: self._store.put(key, record),
            is_retryable=lambda e: isinstance(e, StoreError),
            on_retry=lambda attempt, e: logger.warning("WriteRecord retry", transaction_id=key, attempt=attempt, error=str(e)),
        )
        execution.outputs[WorkflowStep.WRITE_RECORD.value] = {"key": key}

    def _publish_processed(self, execution: WorkflowExecution) -> None:
        execution.transition(WorkflowStep.PUBLISH_PROCESSED)
        processed = ProcessedEvent.for_transaction(
            execution.event,
            event_bus_name=self._event_bus.name,
            source=self._event_bus.source,
            detail_type=self._event_bus.processed_detail_type,
        )
        try:
            self._retry.execute_with_retry(
                lambda: self._publisher.publish(processed),
                is_retryable=lambda e: isinstance(e, PublishError) and e.retryable,
                on_retry=lambda attempt, e: logger.warning(
                    "PublishProcessed retry", transaction_id=execution.transaction_id, attempt=attempt, error=str(e)
                ),
            )
        except Exception as e:
            # The record is committed: any publish failure becomes a replayable pending state
            cause = e.last_error if isinstance(e, MaxRetriesExceeded) else e
            execution.error = WorkflowStepError(WorkflowErrorKind.PUBLISH_FAILED, execution.transaction_id, cause)
            execution.pending_publish = True
            execution.transition(WorkflowStep.FAILED)
            execution.status = ExecutionStatus.FAILED
            with self._lock:
                self._pending[execution.execution_id] = execution
            logger.warning(
                "PublishProcessed failed; held for replay",
                execution_id=execution.execution_id,
                transaction_id=execution.transaction_id,
                error=str(cause),
            )
            return

        execution.outputs[WorkflowStep.PUBLISH_PROCESSED.value] = processed.to_entry()
        execution.error = None
        execution.pending_publish = False
        execution.transition(WorkflowStep.DONE)
        execution.status = ExecutionStatus.SUCCEEDED

    def _finish(self, execution: WorkflowExecution) -> WorkflowExecution:
        execution.finished_at = self._clock.now()
        with self._lock:
            self._audit.append(execution)
        if self._reporter is not None:
            self._reporter.report(execution.to_report())
        return execution

    def replay_pending(self) -> list[WorkflowExecution]:
        """Re-run PublishProcessed for every execution held after a publish failure.

        WriteRecord is not repeated. Executions that fail again stay pending.

        Returns:
            The executions that were replayed, in their new terminal state.
        """
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for execution in pending:
            execution.status = ExecutionStatus.RUNNING
            self._publish_processed(execution)
            self._finish(execution)
        return pending

    def pending_publish(self) -> list[WorkflowExecution]:
        with self._lock:
            return list(self._pending.values())

    def recent_executions(self) -> list[WorkflowExecution]:
        """Completed executions within the audit window, oldest first."""
        with self._lock:
            return list(self._audit)

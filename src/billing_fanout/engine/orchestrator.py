# src/billing_fanout/engine/orchestrator.py
"""Pipeline assembly: settings in, a running Router out.

build_pipeline() wires adapters from configuration; every collaborator can
be overridden for tests.

Example:
    settings = load_settings(Path("settings.yaml"))
    with build_pipeline(settings) as pipeline:
        pipeline.dispatch(raw_event)
    # archiver flushed, workflows drained
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import structlog

from billing_fanout.core.catalog import StaticCatalog, transaction_table
from billing_fanout.engine.archiver import BatchArchiver
from billing_fanout.engine.retry import RetryConfig, RetryManager
from billing_fanout.engine.router import Router
from billing_fanout.engine.workflow import WorkflowExecutor
from billing_fanout.plugins.destinations import create_object_store
from billing_fanout.plugins.publishers import create_publisher
from billing_fanout.plugins.stores import create_store
from billing_fanout.telemetry.counters import DeliveryCounters
from billing_fanout.telemetry.reporter import StructlogReporter

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Mapping
    from types import TracebackType

    from billing_fanout.core.catalog import Catalog
    from billing_fanout.core.config import FanoutSettings
    from billing_fanout.engine.clock import Clock
    from billing_fanout.engine.router import DispatchOutcome
    from billing_fanout.plugins.destinations import ObjectStore
    from billing_fanout.plugins.publishers import EventPublisher
    from billing_fanout.plugins.stores import KeyValueStore
    from billing_fanout.telemetry.reporter import ReportSink

logger = structlog.get_logger(__name__)


class FanoutPipeline:
    """Owns the archiver, the workflow executor, the router and the worker pool."""

    def __init__(
        self,
        settings: FanoutSettings,
        *,
        archiver: BatchArchiver,
        executor: WorkflowExecutor,
        router: Router,
        pool: ThreadPoolExecutor,
        counters: DeliveryCounters,
        closeables: list[Any] | None = None,
    ) -> None:
        self.settings = settings
        self.archiver = archiver
        self.executor = executor
        self.router = router
        self.counters = counters
        self._pool = pool
        self._closeables = closeables or []
        self._started = False
        self._closed = False

    def start(self) -> None:
        if self._started:
            return
        self.archiver.start()
        self._started = True
        logger.info("Pipeline started", state_machine=self.executor.name, table=self.settings.archiver.table_name)

    def dispatch(self, raw: Mapping[str, Any] | str | bytes, cancel: threading.Event | None = None) -> DispatchOutcome:
        return self.router.dispatch(raw, cancel)

    def close(self) -> None:
        """Drain workflows, flush the archiver and release adapters."""
        if self._closed:
            return
        self._closed = True
        self._pool.shutdown(wait=True)
        self.archiver.stop()
        for resource in self._closeables:
            close = getattr(resource, "close", None)
            if close is not None:
                close()
        logger.info("Pipeline closed", counters=self.counters.snapshot())

    def __enter__(self) -> FanoutPipeline:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


def build_pipeline(
    settings: FanoutSettings,
    *,
    clock: Clock | None = None,
    reporter: ReportSink | None = None,
    catalog: Catalog | None = None,
    store: KeyValueStore | None = None,
    publisher: EventPublisher | None = None,
    primary: ObjectStore | None = None,
    backup: ObjectStore | None = None,
    error: ObjectStore | None = None,
    retry_sleep: Callable[[float], None] | None = None,
) -> FanoutPipeline:
    """Assemble a pipeline from settings. Not started; use start() or a with-block."""
    reporter = reporter if reporter is not None else StructlogReporter()
    if catalog is None:
        catalog = StaticCatalog(
            [transaction_table(settings.catalog.database, settings.catalog.table, settings.catalog.amount_type)]
        )
    table = catalog.get_table(settings.catalog.database, settings.catalog.table)

    destinations = settings.destinations
    primary = primary if primary is not None else create_object_store(destinations.primary, name="primary")
    backup = backup if backup is not None else create_object_store(destinations.backup, name="backup")
    if error is None and destinations.error is not None:
        error = create_object_store(destinations.error, name="error")

    closeables: list[Any] = []
    if store is None:
        store = create_store(settings.workflow.store)
        closeables.append(store)
    if publisher is None:
        publisher = create_publisher(settings.workflow.publisher)
        closeables.append(publisher)

    archiver = BatchArchiver(
        settings.archiver,
        table=table,
        primary=primary,
        backup=backup,
        error=error,
        reporter=reporter,
        clock=clock,
        retry_sleep=retry_sleep,
    )
    executor = WorkflowExecutor(
        store,
        publisher,
        event_bus=settings.event_bus,
        retry=RetryManager(RetryConfig.from_settings(settings.workflow.retry), sleep=retry_sleep),
        reporter=reporter,
        clock=clock,
        audit_window=settings.workflow.audit_window,
        name=settings.workflow.state_machine_name,
    )
    pool = ThreadPoolExecutor(max_workers=settings.workflow.max_workers, thread_name_prefix="workflow")
    counters = DeliveryCounters()
    router = Router(archiver, executor, pool, event_bus=settings.event_bus, counters=counters, reporter=reporter)
    return FanoutPipeline(
        settings,
        archiver=archiver,
        executor=executor,
        router=router,
        pool=pool,
        counters=counters,
        closeables=closeables,
    )

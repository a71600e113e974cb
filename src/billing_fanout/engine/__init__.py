# src/billing_fanout/engine/__init__.py
"""Fan-out engine: transformation, archival, workflow execution and routing.

This module provides:
- transform: raw envelope -> TransactionEvent
- BatchArchiver: buffered, partitioned, format-converted archival
- WorkflowExecutor: WriteRecord -> PublishProcessed state machine
- Router: independent delivery of one event to both paths
- RetryManager: Retry logic with tenacity

Example:
    from billing_fanout.core.config import FanoutSettings
    from billing_fanout.engine import build_pipeline

    with build_pipeline(FanoutSettings()) as pipeline:
        outcome = pipeline.dispatch(raw_event)
"""

from billing_fanout.engine.archiver import ArchiveBatch, BatchArchiver
from billing_fanout.engine.clock import Clock, MockClock, SystemClock
from billing_fanout.engine.orchestrator import FanoutPipeline, build_pipeline
from billing_fanout.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from billing_fanout.engine.router import DispatchOutcome, Router
from billing_fanout.engine.transformer import transform
from billing_fanout.engine.triggers import FlushTrigger
from billing_fanout.engine.workflow import WorkflowExecution, WorkflowExecutor

__all__ = [
    "ArchiveBatch",
    "BatchArchiver",
    "Clock",
    "DispatchOutcome",
    "FanoutPipeline",
    "FlushTrigger",
    "MaxRetriesExceeded",
    "MockClock",
    "RetryConfig",
    "RetryManager",
    "Router",
    "SystemClock",
    "WorkflowExecution",
    "WorkflowExecutor",
    "build_pipeline",
    "transform",
]

# src/billing_fanout/telemetry/reporter.py
"""Report sinks.

Every failure report (rejected envelope, backpressure, failed batch, failed
execution) goes through a ReportSink. StructlogReporter is the production
sink; CollectingReporter captures reports for tests.
"""

from __future__ import annotations

import threading
from dataclasses import asdict
from typing import Protocol, TypeVar

import structlog

from billing_fanout.contracts.enums import ExecutionStatus
from billing_fanout.contracts.reports import (
    ArchiveBackpressure,
    BatchFailure,
    ExecutionReport,
    FlushReport,
    Report,
    TimeAnomalyDetected,
    TransformRejected,
)

logger = structlog.get_logger("billing_fanout.reports")

R = TypeVar("R")


class ReportSink(Protocol):
    def report(self, report: Report) -> None: ...


class StructlogReporter:
    """Emits each report as one structured log event.

    Failures log at WARNING or ERROR so alerting can key off level; fatal
    batch failures are the only process-level escalation.
    """

    def report(self, report: Report) -> None:
        fields = asdict(report)
        if isinstance(report, BatchFailure):
            if report.fatal:
                logger.error("archive_batch_fatal", **fields)
            else:
                logger.warning("archive_batch_requeued", **fields)
        elif isinstance(report, FlushReport):
            logger.info("archive_flush", **fields)
        elif isinstance(report, ExecutionReport):
            if report.status is ExecutionStatus.SUCCEEDED:
                logger.debug("workflow_execution", **fields)
            else:
                logger.warning("workflow_execution", **fields)
        elif isinstance(report, TransformRejected):
            logger.warning("transform_rejected", **fields)
        elif isinstance(report, TimeAnomalyDetected):
            logger.warning("time_anomaly", **fields)
        elif isinstance(report, ArchiveBackpressure):
            logger.warning("archive_backpressure", **fields)


class CollectingReporter:
    """Collects reports in memory."""

    def __init__(self) -> None:
        self._reports: list[Report] = []
        self._lock = threading.Lock()

    def report(self, report: Report) -> None:
        with self._lock:
            self._reports.append(report)

    @property
    def reports(self) -> list[Report]:
        with self._lock:
            return list(self._reports)

    def of_type(self, report_type: type[R]) -> list[R]:
        with self._lock:
            return [r for r in self._reports if isinstance(r, report_type)]

# src/billing_fanout/telemetry/__init__.py
"""Observability collaborator: delivery counters and structured report sinks."""

from billing_fanout.telemetry.counters import DeliveryCounters
from billing_fanout.telemetry.reporter import CollectingReporter, ReportSink, StructlogReporter

__all__ = [
    "CollectingReporter",
    "DeliveryCounters",
    "ReportSink",
    "StructlogReporter",
]

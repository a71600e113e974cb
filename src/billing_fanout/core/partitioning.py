# src/billing_fanout/core/partitioning.py
"""Hive-style partition paths derived from flush time.

Layout (must stay bit-exact for downstream query engines):

    <table>/year=YYYY/month=MM/day=DD/hour=HH/
    <table>error/<error-type>/year=YYYY/month=MM/day=DD/hour=HH/

The partition is taken from when the batch is flushed, in UTC, never from
per-event timestamps.
"""

from datetime import UTC, datetime

from billing_fanout.contracts.enums import ErrorOutputType


def _as_utc(moment: datetime) -> datetime:
    # Naive datetimes are treated as UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def partition_path(flushed_at: datetime) -> str:
    """year=YYYY/month=MM/day=DD/hour=HH/ for the given flush time."""
    t = _as_utc(flushed_at)
    return f"year={t.year:04d}/month={t.month:02d}/day={t.day:02d}/hour={t.hour:02d}/"


def success_prefix(table_name: str, flushed_at: datetime) -> str:
    return f"{table_name}/{partition_path(flushed_at)}"


def error_prefix(table_name: str, error_type: ErrorOutputType, flushed_at: datetime) -> str:
    return f"{table_name}error/{error_type.value}/{partition_path(flushed_at)}"


def object_name(table_name: str, flushed_at: datetime, batch_id: str, extension: str) -> str:
    """File name within a partition: <table>-YYYY-MM-DD-HH-MM-SS-<batch_id><extension>."""
    t = _as_utc(flushed_at)
    return f"{table_name}-{t:%Y-%m-%d-%H-%M-%S}-{batch_id}{extension}"

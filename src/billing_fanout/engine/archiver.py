# src/billing_fanout/engine/archiver.py
"""BatchArchiver: buffered, partitioned, format-converted archival (OLAP path).

Responsibilities:
- Buffer appended records in a pending batch bounded by max_pending_records.
  A saturated queue raises Backpressure instead of growing.
- Flush on size OR interval (first to fire wins), or explicitly.
- On flush, write three streams partitioned by flush-time UTC hour:
    backup  - every record as canonical JSON lines, gzip
    primary - records converted against the catalog, GZIP Parquet
    error   - records that failed conversion (or backup encoding), tagged
- Retry destination writes with bounded backoff. A batch that exhausts its
  retries is re-queued once; failing again makes it a fatal batch held for
  operator intervention. Nothing is dropped.

Concurrency:
    The pending batch is the only mutable state shared with appenders. It is
    mutated under _lock by append() and replaced wholesale under _lock by the
    flush swap, so an append lands entirely in one batch. Object writes happen
    outside _lock; _flush_lock serializes flushes against each other.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from billing_fanout.contracts.enums import ErrorOutputType, FlushReason
from billing_fanout.contracts.errors import Backpressure, ConversionError, DestinationWriteError, FatalBatchError
from billing_fanout.contracts.events import TransactionEvent
from billing_fanout.contracts.reports import BatchFailure, FlushReport
from billing_fanout.core.canonical import canonical_line
from billing_fanout.core.partitioning import error_prefix, object_name, partition_path, success_prefix
from billing_fanout.engine.clock import DEFAULT_CLOCK
from billing_fanout.engine.conversion import RecordConverter, error_line, gzip_lines
from billing_fanout.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from billing_fanout.engine.triggers import FlushTrigger

if TYPE_CHECKING:
    from collections.abc import Callable

    from billing_fanout.core.catalog import TableSchema
    from billing_fanout.core.config import ArchiverSettings
    from billing_fanout.engine.clock import Clock
    from billing_fanout.plugins.destinations import ObjectStore
    from billing_fanout.telemetry.reporter import ReportSink

logger = structlog.get_logger(__name__)

# Flusher thread wait when nothing is buffered
_IDLE_POLL_SECONDS = 1.0


def _new_batch_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class _Entry:
    """One buffered record with its backup encoding.

    raw is None when the record cannot be canonically encoded; such a record
    is routed to the backup error stream instead of backup and conversion.
    """

    record: dict[str, Any]
    raw: bytes | None
    encode_error: str | None = None

    @property
    def size(self) -> int:
        return len(self.raw) if self.raw is not None else len(repr(self.record))


@dataclass
class ArchiveBatch:
    """Records awaiting flush. Replaced, never reused, after each flush."""

    batch_id: str = field(default_factory=_new_batch_id)
    entries: list[_Entry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True, slots=True)
class PendingWrite:
    destination: str
    key: str
    body: bytes


@dataclass
class OutgoingBatch:
    """Objects of one flushed batch still to be written.

    Keys are fixed at flush time, so a re-queued batch keeps its partition.
    """

    batch_id: str
    writes: list[PendingWrite]
    attempts: int = 0
    requeued: bool = False
    retry_after: float = 0.0
    last_error: BaseException | None = None
    fatal_error: FatalBatchError | None = None

    @property
    def pending_keys(self) -> tuple[str, ...]:
        return tuple(w.key for w in self.writes)


class BatchArchiver:
    """Buffers records and flushes them as partitioned batches.

    Example:
        archiver = BatchArchiver(settings, table=schema, primary=p, backup=b, error=e)
        archiver.start()
        archiver.append(event)      # may raise Backpressure
        ...
        archiver.stop()             # final flush
    """

    def __init__(
        self,
        settings: ArchiverSettings,
        *,
        table: TableSchema,
        primary: ObjectStore,
        backup: ObjectStore,
        error: ObjectStore | None = None,
        reporter: ReportSink | None = None,
        clock: Clock | None = None,
        retry_sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._settings = settings
        self._table_name = settings.table_name
        self._converter = RecordConverter(table)
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._reporter = reporter
        self._destinations: dict[str, ObjectStore] = {
            "primary": primary,
            "backup": backup,
            "error": error if error is not None else primary,
        }
        self._retry = RetryManager(RetryConfig.from_settings(settings.retry), sleep=retry_sleep)

        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._batch = ArchiveBatch()
        self._backup_lines: list[bytes] = []
        self._primary_trigger = FlushTrigger(
            size_bytes=settings.flush_size_bytes,
            interval_seconds=settings.flush_interval_seconds,
            clock=self._clock,
        )
        self._backup_trigger = FlushTrigger(
            size_bytes=settings.backup_flush_size_bytes,
            interval_seconds=settings.flush_interval_seconds,
            clock=self._clock,
        )

        self._requeued: list[OutgoingBatch] = []
        self._fatal: list[OutgoingBatch] = []

        self._wakeup = threading.Event()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    # --- Append side ---

    @property
    def capacity(self) -> int:
        return self._settings.max_pending_records

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._batch)

    def append(self, event: TransactionEvent | Mapping[str, Any]) -> None:
        """Add one record to the pending batch.

        Waits at most enqueue_timeout_seconds for the batch lock.

        Raises:
            Backpressure: If the queue is at capacity or the lock could not be
                acquired in time. Nothing was enqueued.
        """
        record = event.to_record() if isinstance(event, TransactionEvent) else dict(event)
        entry = self._encode(record)

        if not self._lock.acquire(timeout=self._settings.enqueue_timeout_seconds):
            raise Backpressure(self.capacity, len(self._batch))
        try:
            pending = len(self._batch)
            if pending >= self.capacity:
                raise Backpressure(self.capacity, pending)
            self._batch.entries.append(entry)
            self._primary_trigger.record_append(entry.size)
            if entry.raw is not None:
                self._backup_lines.append(entry.raw)
                self._backup_trigger.record_append(len(entry.raw))
            due = self._primary_trigger.should_trigger() or self._backup_trigger.should_trigger()
        finally:
            self._lock.release()

        if due:
            self._wakeup.set()

    @staticmethod
    def _encode(record: dict[str, Any]) -> _Entry:
        try:
            return _Entry(record=record, raw=canonical_line(record))
        except (ValueError, TypeError) as e:
            return _Entry(record=record, raw=None, encode_error=str(e))

    # --- Flush side ---

    def flush_if_due(self) -> FlushReport | None:
        """Flush whichever buffer has a fired trigger; retry due re-queued batches."""
        with self._lock:
            primary_due = self._primary_trigger.should_trigger()
            primary_reason = self._primary_trigger.flush_reason()
            backup_due = not primary_due and self._backup_trigger.should_trigger()

        report: FlushReport | None = None
        if primary_due:
            report = self.flush(primary_reason or FlushReason.MANUAL)
        elif backup_due:
            self.flush_backup()
        self._retry_due_requeued()
        return report

    def flush(self, reason: FlushReason = FlushReason.MANUAL) -> FlushReport | None:
        """Swap out the pending batch and write it.

        Returns:
            FlushReport, or None when there was nothing to flush.
        """
        with self._flush_lock:
            with self._lock:
                batch, self._batch = self._batch, ArchiveBatch()
                backup_lines, self._backup_lines = self._backup_lines, []
                self._primary_trigger.reset()
                self._backup_trigger.reset()

            if not batch.entries and not backup_lines:
                return None

            flushed_at = self._clock.now()
            writes: list[PendingWrite] = []
            if backup_lines:
                writes.append(self._backup_write(backup_lines, flushed_at, batch.batch_id))

            rows: list[dict[str, Any]] = []
            errors: dict[ErrorOutputType, list[bytes]] = {}
            for entry in batch.entries:
                if entry.raw is None:
                    failure = ConversionError(entry.encode_error or "unencodable record", output_type=ErrorOutputType.BACKUP)
                    raw_data = repr(entry.record).encode("utf-8")
                else:
                    try:
                        rows.append(self._converter.convert(entry.record))
                        continue
                    except ConversionError as e:
                        failure = e
                        raw_data = entry.raw
                line = error_line(raw_data, failure, arrived_at=flushed_at, table=self._converter.schema)
                errors.setdefault(failure.output_type, []).append(line)

            if rows:
                key = success_prefix(self._table_name, flushed_at) + object_name(self._table_name, flushed_at, batch.batch_id, ".parquet")
                writes.append(PendingWrite("primary", key, self._converter.encode(rows)))
            for output_type, lines in errors.items():
                key = error_prefix(self._table_name, output_type, flushed_at) + object_name(
                    self._table_name, flushed_at, batch.batch_id, ".jsonl.gz"
                )
                writes.append(PendingWrite("error", key, gzip_lines(lines)))

            outgoing = OutgoingBatch(batch_id=batch.batch_id, writes=writes)
            keys = outgoing.pending_keys
            delivered = self._deliver(outgoing)

            error_count = sum(len(lines) for lines in errors.values())
            report = FlushReport(
                batch_id=batch.batch_id,
                reason=reason,
                flushed_at=flushed_at,
                partition=partition_path(flushed_at),
                record_count=len(batch.entries),
                converted_count=len(rows),
                error_count=error_count,
                backup_count=len(backup_lines),
                object_keys=keys,
                succeeded=delivered,
                requeued=not delivered,
            )
            logger.info(
                "Archive batch flushed",
                batch_id=batch.batch_id,
                reason=reason.value,
                records=report.record_count,
                converted=report.converted_count,
                errors=error_count,
                succeeded=delivered,
            )
            self._emit(report)
            return report

    def flush_backup(self) -> int:
        """Write buffered backup lines ahead of the primary flush.

        The backup stream has its own (smaller) size threshold. Records
        stay in the primary batch; only their backup copy is written now.

        Returns:
            Number of backup lines written (0 when nothing was buffered).
        """
        with self._flush_lock:
            with self._lock:
                backup_lines, self._backup_lines = self._backup_lines, []
                self._backup_trigger.reset()
            if not backup_lines:
                return 0
            flushed_at = self._clock.now()
            batch_id = _new_batch_id()
            outgoing = OutgoingBatch(batch_id=batch_id, writes=[self._backup_write(backup_lines, flushed_at, batch_id)])
            self._deliver(outgoing)
            return len(backup_lines)

    def _backup_write(self, lines: list[bytes], flushed_at: datetime, batch_id: str) -> PendingWrite:
        key = success_prefix(self._table_name, flushed_at) + object_name(self._table_name, flushed_at, batch_id, ".jsonl.gz")
        return PendingWrite("backup", key, gzip_lines(lines))

    # --- Delivery, re-queue and fatal handling ---

    def _write_all(self, outgoing: OutgoingBatch) -> None:
        """Write every pending object, dropping each from the list once stored."""
        while outgoing.writes:
            write = outgoing.writes[0]
            store = self._destinations[write.destination]

            def on_retry(attempt: int, error: BaseException, _key: str = write.key) -> None:
                logger.warning("Destination write failed, retrying", batch_id=outgoing.batch_id, key=_key, attempt=attempt, error=str(error))

            self._retry.execute_with_retry(
                lambda: store.put(write.key, write.body),
                is_retryable=lambda e: isinstance(e, DestinationWriteError),
                on_retry=on_retry,
            )
            outgoing.writes.pop(0)

    def _attempt(self, outgoing: OutgoingBatch) -> BaseException | None:
        """One delivery attempt of a batch. Returns the error that stopped it, or None."""
        outgoing.attempts += 1
        try:
            self._write_all(outgoing)
        except MaxRetriesExceeded as e:
            return e.last_error
        except Exception as e:
            # Not retryable, but the batch stays on the re-queue/fatal path
            return e
        return None

    def _deliver(self, outgoing: OutgoingBatch) -> bool:
        """Write a batch; on failure re-queue it once, then mark it fatal.

        Returns:
            True if every object was written.
        """
        last_error = self._attempt(outgoing)
        if last_error is None:
            return True

        outgoing.last_error = last_error
        fatal = outgoing.requeued
        if fatal:
            outgoing.fatal_error = FatalBatchError(outgoing.batch_id, outgoing.attempts, last_error)
            self._fatal.append(outgoing)
            logger.error("Archive batch failed fatally", error=str(last_error), batch_id=outgoing.batch_id, pending_keys=outgoing.pending_keys)
        else:
            outgoing.requeued = True
            outgoing.retry_after = self._clock.monotonic() + self._settings.flush_interval_seconds
            self._requeued.append(outgoing)

        self._emit(
            BatchFailure(
                batch_id=outgoing.batch_id,
                attempts=outgoing.attempts,
                error=str(last_error),
                pending_keys=outgoing.pending_keys,
                fatal=fatal,
            )
        )
        return False

    def _retry_due_requeued(self, *, force: bool = False) -> None:
        with self._flush_lock:
            now = self._clock.monotonic()
            due = [b for b in self._requeued if force or b.retry_after <= now]
            for outgoing in due:
                self._requeued.remove(outgoing)
                if self._deliver(outgoing):
                    logger.info("Re-queued archive batch delivered", batch_id=outgoing.batch_id)

    def retry_requeued(self) -> None:
        """Retry every re-queued batch now, regardless of its retry time."""
        self._retry_due_requeued(force=True)

    @property
    def requeued_batches(self) -> list[OutgoingBatch]:
        with self._flush_lock:
            return list(self._requeued)

    @property
    def fatal_batches(self) -> list[OutgoingBatch]:
        with self._flush_lock:
            return list(self._fatal)

    def retry_fatal(self) -> int:
        """Operator action: attempt every fatal batch once more.

        Batches that succeed are released; the rest stay fatal.

        Returns:
            Number of batches delivered.
        """
        delivered = 0
        with self._flush_lock:
            batches, self._fatal = self._fatal, []
            for outgoing in batches:
                last_error = self._attempt(outgoing)
                if last_error is None:
                    delivered += 1
                    continue
                outgoing.last_error = last_error
                outgoing.fatal_error = FatalBatchError(outgoing.batch_id, outgoing.attempts, last_error)
                self._fatal.append(outgoing)
        return delivered

    def _emit(self, report: FlushReport | BatchFailure) -> None:
        if self._reporter is not None:
            self._reporter.report(report)

    # --- Background flusher ---

    def start(self) -> None:
        """Start the background flusher thread."""
        if self._thread is not None:
            raise RuntimeError("archiver already started")
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="archive-flusher", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the flusher, flush what is pending and retry re-queued batches once more."""
        if self._thread is not None:
            self._stopping.set()
            self._wakeup.set()
            self._thread.join(timeout)
            self._thread = None
        self.flush(FlushReason.SHUTDOWN)
        self.retry_requeued()

    def _next_wait(self) -> float:
        with self._lock:
            waits = [w for w in (self._primary_trigger.seconds_until_due(), self._backup_trigger.seconds_until_due()) if w is not None]
        return min(waits) if waits else _IDLE_POLL_SECONDS

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._wakeup.wait(self._next_wait())
            self._wakeup.clear()
            if self._stopping.is_set():
                break
            try:
                self.flush_if_due()
            except Exception:
                # Keep the flusher alive. Write failures never get here; _deliver holds the batch.
                logger.exception("Archive flusher tick failed")

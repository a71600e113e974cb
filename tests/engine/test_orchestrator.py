# tests/engine/test_orchestrator.py
"""Tests for pipeline assembly from settings."""

import gzip
from pathlib import Path

from billing_fanout.contracts.enums import ExecutionStatus
from billing_fanout.core.config import (
    DestinationSettings,
    DestinationsSettings,
    FanoutSettings,
    StoreSettings,
    WorkflowSettings,
)
from billing_fanout.engine.orchestrator import build_pipeline
from billing_fanout.plugins.destinations import FilesystemObjectStore
from billing_fanout.plugins.stores import SqlKeyValueStore


def _filesystem_settings(tmp_path: Path) -> FanoutSettings:
    return FanoutSettings(
        destinations=DestinationsSettings(
            primary=DestinationSettings(kind="filesystem", path=tmp_path / "processed"),
            backup=DestinationSettings(kind="filesystem", path=tmp_path / "backup"),
        ),
        workflow=WorkflowSettings(
            max_workers=2,
            store=StoreSettings(kind="sql", url=f"sqlite:///{tmp_path / 'transactions.db'}"),
        ),
    )


class TestBuildPipeline:
    def test_wires_configured_adapters(self, tmp_path: Path, clock, reporter) -> None:
        pipeline = build_pipeline(_filesystem_settings(tmp_path), clock=clock, reporter=reporter)

        assert isinstance(pipeline.archiver._destinations["primary"], FilesystemObjectStore)
        assert isinstance(pipeline.executor._store, SqlKeyValueStore)
        assert pipeline.executor.name == "TransactionProcess"
        pipeline.close()

    def test_run_writes_files_and_rows(self, tmp_path: Path, clock, reporter, raw_event) -> None:
        settings = _filesystem_settings(tmp_path)

        with build_pipeline(settings, clock=clock, reporter=reporter) as pipeline:
            outcome = pipeline.dispatch(raw_event("tx-1"))
            assert outcome.workflow is not None
            assert outcome.workflow.result(timeout=5).status is ExecutionStatus.SUCCEEDED

        partition = tmp_path / "processed" / "transactions" / "year=2024" / "month=03" / "day=05" / "hour=14"
        assert [p.suffix for p in partition.iterdir()] == [".parquet"]
        [backup_file] = (tmp_path / "backup" / "transactions" / "year=2024" / "month=03" / "day=05" / "hour=14").iterdir()
        assert b'"transaction_id":"tx-1"' in gzip.decompress(backup_file.read_bytes())

        store = SqlKeyValueStore(settings.workflow.store.url)
        try:
            record = store.get("tx-1")
        finally:
            store.close()
        assert record is not None
        assert record["total_amount"] == "125.50"

    def test_close_is_idempotent(self, clock, reporter) -> None:
        pipeline = build_pipeline(FanoutSettings(), clock=clock, reporter=reporter)
        pipeline.start()
        pipeline.start()

        pipeline.close()
        pipeline.close()

        assert pipeline.counters.snapshot() == {}

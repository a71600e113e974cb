# tests/integration/test_end_to_end.py
"""One raw event through the whole pipeline, both paths observed."""

import io
from decimal import Decimal

import pyarrow.parquet as pq

from billing_fanout.contracts.enums import DispatchStatus, ExecutionStatus
from billing_fanout.contracts.reports import ExecutionReport, FlushReport
from billing_fanout.core.config import FanoutSettings
from billing_fanout.engine.orchestrator import build_pipeline
from billing_fanout.plugins.publishers import InMemoryEventPublisher
from billing_fanout.plugins.stores import InMemoryKeyValueStore

PARTITION = "transactions/year=2024/month=03/day=05/hour=14/"


class TestEndToEnd:
    def test_transaction_fans_out(self, raw_event, clock, reporter, primary, backup, error_store) -> None:
        store = InMemoryKeyValueStore()
        publisher = InMemoryEventPublisher()

        with build_pipeline(
            FanoutSettings(),
            clock=clock,
            reporter=reporter,
            store=store,
            publisher=publisher,
            primary=primary,
            backup=backup,
            error=error_store,
        ) as pipeline:
            outcome = pipeline.dispatch(raw_event("tx-e2e", amount="125.50", from_account="A1", to_account="A2"))
            assert outcome.status is DispatchStatus.DISPATCHED
            assert outcome.workflow is not None
            execution = outcome.workflow.result(timeout=5)

        event = outcome.event
        assert event is not None
        assert event.total_amount == Decimal("125.50")

        # OLTP path: one stored record, one processed event with identical fields
        assert execution.status is ExecutionStatus.SUCCEEDED
        assert len(store) == 1
        record = store.get("tx-e2e")
        assert record == {
            "transaction_id": "tx-e2e",
            "customer_id": "C-42",
            "received_datetime": "2024-03-05T14:10:00Z",
            "requested_datetime": "2024-03-05T14:09:58Z",
            "source_account": "A1",
            "destination_account": "A2",
            "total_amount": "125.50",
        }
        [entry] = publisher.entries
        assert entry["Detail"] == record
        assert entry["DetailType"] == "transaction-processed"

        # OLAP path: flushed on shutdown into the 14:00 UTC partition
        [primary_key] = primary.keys(PARTITION)
        [row] = pq.read_table(io.BytesIO(primary.get(primary_key))).to_pylist()
        assert row["total_amount"] == Decimal("125.50")
        assert row["source_account"] == "A1"
        assert backup.keys(PARTITION)
        assert error_store.keys() == []

        assert [r.status for r in reporter.of_type(ExecutionReport)] == [ExecutionStatus.SUCCEEDED]
        assert len(reporter.of_type(FlushReport)) == 1
        assert pipeline.counters.get("dispatched") == 1

# src/billing_fanout/__init__.py
"""
billing-fanout: event-driven transaction fan-out.

One "transaction-initiated" event is delivered to two independent consumers:
a buffered batch archiver (OLAP path) and a sequential workflow executor
(OLTP path) that persists the transaction and publishes "transaction-processed".
"""

__version__ = "0.1.0"

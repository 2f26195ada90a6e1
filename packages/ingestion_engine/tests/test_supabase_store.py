"""Tests for the Supabase store against a mocked PostgREST client."""

import asyncio
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from packages.ingestion_engine.exceptions import Conflict, StoreUnavailable
from packages.ingestion_engine.models import RejectedRow, Transaction, TransactionFilter, UploadBatch
from packages.ingestion_engine.supabase_store import SupabaseTransactionStore

FP = "a" * 64 + ":1"

ROW = {
    "user_id": "u1",
    "fingerprint": FP,
    "base_fingerprint": "a" * 64,
    "occurrence_index": 1,
    "transaction_date": "2024-01-05",
    "description": "Coffee Shop",
    "amount_minor": -450,
    "raw_balance_minor": None,
    "upload_id": "up-1",
}


@pytest.fixture
def table():
    table = MagicMock()
    for method in ("select", "eq", "gte", "lte", "order", "limit"):
        getattr(table, method).return_value = table
    table.execute.return_value = MagicMock(data=[ROW], count=2)
    return table


@pytest.fixture
def store(table):
    client = MagicMock()
    client.table.return_value = table
    return SupabaseTransactionStore(client)


def test_count_uses_exact_count(store, table):
    assert asyncio.run(store.count_by_base_fingerprint("u1", "a" * 64)) == 2
    table.select.assert_called_with("fingerprint", count="exact")
    table.eq.assert_any_call("base_fingerprint", "a" * 64)


def test_exists(store, table):
    assert asyncio.run(store.exists("u1", FP)) is True
    table.execute.return_value = MagicMock(data=[])
    assert asyncio.run(store.exists("u1", FP)) is False


def test_insert_maps_row(store, table):
    txn = Transaction(
        date=date(2024, 1, 5),
        description="Coffee Shop",
        amount=-450,
        source_upload_id="up-1",
        fingerprint=FP,
        user_id="u1",
    )
    asyncio.run(store.insert(txn))
    table.insert.assert_called_once_with(ROW)


def test_unique_violation_becomes_conflict(store, table):
    table.insert.return_value.execute.side_effect = APIError(
        {"code": "23505", "message": "duplicate key value violates unique constraint"}
    )
    txn = Transaction(date(2024, 1, 5), "Coffee Shop", -450, fingerprint=FP, user_id="u1")

    with pytest.raises(Conflict) as exc:
        asyncio.run(store.insert(txn))
    assert exc.value.existing.description == "Coffee Shop"
    assert exc.value.existing.source_upload_id == "up-1"


def test_other_api_errors_propagate(store, table):
    table.insert.return_value.execute.side_effect = APIError({"code": "42501", "message": "denied"})
    txn = Transaction(date(2024, 1, 5), "Coffee Shop", -450, fingerprint=FP, user_id="u1")

    with pytest.raises(APIError):
        asyncio.run(store.insert(txn))


def test_transport_errors_are_unavailable(store, table):
    table.execute.side_effect = httpx.ConnectError("connection refused")
    with pytest.raises(StoreUnavailable):
        asyncio.run(store.exists("u1", FP))
    assert asyncio.run(store.ping()) is False


def test_list_applies_filters(store, table):
    txn_filter = TransactionFilter(
        date_from=date(2024, 1, 1), max_amount=0, limit=10
    )
    result = asyncio.run(store.list_transactions("u1", txn_filter))

    assert result[0].amount == -450
    assert result[0].date == date(2024, 1, 5)
    table.gte.assert_called_once_with("transaction_date", "2024-01-01")
    table.lte.assert_called_once_with("amount_minor", 0)
    table.limit.assert_called_once_with(10)


def test_upload_batch_round_trip(store, table):
    batch = UploadBatch(
        upload_id="up-1",
        user_id="u1",
        timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc),
        source_filename="jan.csv",
        row_count=4,
        accepted_count=2,
        duplicate_count=1,
        rejected_count=1,
        rejected=(RejectedRow(3, "invalid_date", "'x' does not match %Y-%m-%d"),),
    )
    asyncio.run(store.record_upload_batch(batch))
    row = table.insert.call_args[0][0]
    assert row["rejected"] == [{"line": 3, "reason": "invalid_date", "detail": "'x' does not match %Y-%m-%d"}]

    table.execute.return_value = MagicMock(data=[row])
    assert asyncio.run(store.list_upload_batches("u1")) == [batch]

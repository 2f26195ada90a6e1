"""Tests for the in-memory store and the retry/timeout wrapper."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from packages.ingestion_engine.exceptions import Conflict, StoreUnavailable
from packages.ingestion_engine.fingerprint import base_fingerprint, final_fingerprint
from packages.ingestion_engine.models import Transaction, TransactionFilter, UploadBatch
from packages.ingestion_engine.store import InMemoryTransactionStore, RetryingTransactionStore


def make_txn(user_id="u1", day=1, description="Coffee", amount=-450, index=0):
    txn_date = date(2024, 1, day)
    base = base_fingerprint(user_id, txn_date, description, amount)
    return Transaction(
        date=txn_date,
        description=description,
        amount=amount,
        source_upload_id="up-1",
        fingerprint=final_fingerprint(base, index),
        user_id=user_id,
    )


class TestInMemoryStore:
    def test_insert_exists_and_count(self):
        store = InMemoryTransactionStore()
        first, second = make_txn(index=0), make_txn(index=1)

        async def scenario():
            await store.insert(first)
            await store.insert(second)
            base = first.fingerprint.rsplit(":", 1)[0]
            return (
                await store.exists("u1", first.fingerprint),
                await store.exists("u2", first.fingerprint),
                await store.count_by_base_fingerprint("u1", base),
            )

        assert asyncio.run(scenario()) == (True, False, 2)

    def test_insert_conflict_carries_existing(self):
        store = InMemoryTransactionStore()
        txn = make_txn()
        asyncio.run(store.insert(txn))

        with pytest.raises(Conflict) as exc:
            asyncio.run(store.insert(txn))
        assert exc.value.existing == txn

    def test_insert_requires_identity(self):
        store = InMemoryTransactionStore()
        with pytest.raises(ValueError):
            asyncio.run(store.insert(Transaction(date(2024, 1, 1), "x", 1)))

    def test_reads_do_not_create_users(self):
        store = InMemoryTransactionStore()
        asyncio.run(store.exists("ghost", "abc:0"))
        asyncio.run(store.list_transactions("ghost"))
        assert "ghost" not in store._transactions

    def test_list_filters_and_orders(self):
        store = InMemoryTransactionStore()
        txns = [
            make_txn(day=3, description="Lunch", amount=-1200),
            make_txn(day=1, description="Coffee", amount=-450),
            make_txn(day=2, description="Salary", amount=200000),
            make_txn(user_id="u2", day=2, description="Other user", amount=-1),
        ]

        async def scenario():
            for t in txns:
                await store.insert(t)
            everything = await store.list_transactions("u1")
            debits = await store.list_transactions("u1", TransactionFilter(max_amount=-1))
            window = await store.list_transactions(
                "u1", TransactionFilter(date_from=date(2024, 1, 2), date_to=date(2024, 1, 2))
            )
            first = await store.list_transactions("u1", TransactionFilter(limit=1))
            return everything, debits, window, first

        everything, debits, window, first = asyncio.run(scenario())
        assert [t.description for t in everything] == ["Coffee", "Salary", "Lunch"]
        assert [t.description for t in debits] == ["Coffee", "Lunch"]
        assert [t.description for t in window] == ["Salary"]
        assert [t.description for t in first] == ["Coffee"]

    def test_upload_batches_are_per_user(self):
        store = InMemoryTransactionStore()
        batch = UploadBatch(
            upload_id="up-1",
            user_id="u1",
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
            source_filename="jan.csv",
            row_count=3,
            accepted_count=3,
            duplicate_count=0,
            rejected_count=0,
        )
        asyncio.run(store.record_upload_batch(batch))

        assert asyncio.run(store.list_upload_batches("u1")) == [batch]
        assert asyncio.run(store.list_upload_batches("u2")) == []


class FlakyStore(InMemoryTransactionStore):
    """Fails the first ``failures`` calls to exists()."""

    def __init__(self, failures, hang=False):
        super().__init__()
        self.failures = failures
        self.hang = hang
        self.calls = 0

    async def exists(self, user_id, fingerprint):
        self.calls += 1
        if self.calls <= self.failures:
            if self.hang:
                await asyncio.sleep(10)
            raise StoreUnavailable("connection reset")
        return await super().exists(user_id, fingerprint)


async def no_sleep(delay):
    no_sleep.delays.append(delay)


class TestRetryingStore:
    def setup_method(self):
        no_sleep.delays = []

    def test_retries_then_succeeds_with_backoff(self):
        inner = FlakyStore(failures=2)
        store = RetryingTransactionStore(inner, attempts=3, base_delay=0.1, sleep=no_sleep)

        assert asyncio.run(store.exists("u1", "abc:0")) is False
        assert inner.calls == 3
        assert no_sleep.delays == [0.1, 0.2]

    def test_gives_up_with_store_unavailable(self):
        inner = FlakyStore(failures=5)
        store = RetryingTransactionStore(inner, attempts=3, sleep=no_sleep)

        with pytest.raises(StoreUnavailable):
            asyncio.run(store.exists("u1", "abc:0"))
        assert inner.calls == 3

    def test_timeout_is_retried(self):
        inner = FlakyStore(failures=1, hang=True)
        store = RetryingTransactionStore(inner, attempts=2, timeout=0.01, sleep=no_sleep)

        assert asyncio.run(store.exists("u1", "abc:0")) is False
        assert inner.calls == 2

    def test_conflict_is_not_retried(self):
        inner = InMemoryTransactionStore()
        store = RetryingTransactionStore(inner, sleep=no_sleep)
        txn = make_txn()
        asyncio.run(store.insert(txn))

        with pytest.raises(Conflict):
            asyncio.run(store.insert(txn))
        assert no_sleep.delays == []

    def test_ping_reports_down_instead_of_raising(self):
        class DownStore(InMemoryTransactionStore):
            async def ping(self):
                raise StoreUnavailable("down")

        store = RetryingTransactionStore(DownStore(), attempts=2, sleep=no_sleep)
        assert asyncio.run(store.ping()) is False

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryingTransactionStore(InMemoryTransactionStore(), attempts=0)

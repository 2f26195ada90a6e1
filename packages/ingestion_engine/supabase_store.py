"""Supabase (PostgREST) implementation of the TransactionStore contract.

Expected tables:

    transactions(user_id, fingerprint, base_fingerprint, occurrence_index,
                 transaction_date, description, amount_minor,
                 raw_balance_minor, upload_id)
        unique (user_id, fingerprint)
    upload_batches(upload_id, user_id, created_at, source_filename,
                   row_count, accepted_count, duplicate_count,
                   rejected_count, rejected jsonb)

The supabase client is synchronous; calls run in a worker thread so the
event loop is never blocked.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from .exceptions import Conflict, StoreUnavailable
from .fingerprint import split_fingerprint
from .models import RejectedRow, Transaction, TransactionFilter, UploadBatch
from .store import TransactionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_VIOLATION = "23505"


def _to_row(txn: Transaction) -> Dict[str, Any]:
    base, index = split_fingerprint(txn.fingerprint)
    return {
        "user_id": txn.user_id,
        "fingerprint": txn.fingerprint,
        "base_fingerprint": base,
        "occurrence_index": index,
        "transaction_date": txn.date.isoformat(),
        "description": txn.description,
        "amount_minor": txn.amount,
        "raw_balance_minor": txn.raw_balance,
        "upload_id": txn.source_upload_id,
    }


def _from_row(row: Dict[str, Any]) -> Transaction:
    return Transaction(
        date=date.fromisoformat(str(row["transaction_date"])[:10]),
        description=row["description"],
        amount=int(row["amount_minor"]),
        raw_balance=row.get("raw_balance_minor"),
        source_upload_id=row.get("upload_id") or "",
        fingerprint=row["fingerprint"],
        user_id=row["user_id"],
    )


def _batch_to_row(batch: UploadBatch) -> Dict[str, Any]:
    return {
        "upload_id": batch.upload_id,
        "user_id": batch.user_id,
        "created_at": batch.timestamp.isoformat(),
        "source_filename": batch.source_filename,
        "row_count": batch.row_count,
        "accepted_count": batch.accepted_count,
        "duplicate_count": batch.duplicate_count,
        "rejected_count": batch.rejected_count,
        "rejected": [r.to_dict() for r in batch.rejected],
    }


def _batch_from_row(row: Dict[str, Any]) -> UploadBatch:
    return UploadBatch(
        upload_id=row["upload_id"],
        user_id=row["user_id"],
        timestamp=datetime.fromisoformat(str(row["created_at"])),
        source_filename=row["source_filename"],
        row_count=row["row_count"],
        accepted_count=row["accepted_count"],
        duplicate_count=row["duplicate_count"],
        rejected_count=row["rejected_count"],
        rejected=tuple(
            RejectedRow(r.get("line"), r.get("reason", ""), r.get("detail", ""))
            for r in row.get("rejected") or []
        ),
    )


class SupabaseTransactionStore(TransactionStore):
    """TransactionStore backed by Supabase tables (service-role client)."""

    def __init__(
        self,
        client: Client,
        transactions_table: str = "transactions",
        batches_table: str = "upload_batches",
    ):
        self.client = client
        self.transactions_table = transactions_table
        self.batches_table = batches_table

    async def _run(self, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except httpx.TransportError as e:
            raise StoreUnavailable(str(e)) from e

    def _transactions(self):
        return self.client.table(self.transactions_table)

    async def count_by_base_fingerprint(self, user_id: str, base_fingerprint: str) -> int:
        resp = await self._run(
            lambda: self._transactions()
            .select("fingerprint", count="exact")
            .eq("user_id", user_id)
            .eq("base_fingerprint", base_fingerprint)
            .execute()
        )
        return resp.count or 0

    async def exists(self, user_id: str, fingerprint: str) -> bool:
        resp = await self._run(
            lambda: self._transactions()
            .select("fingerprint")
            .eq("user_id", user_id)
            .eq("fingerprint", fingerprint)
            .limit(1)
            .execute()
        )
        return bool(resp.data)

    async def _get(self, user_id: str, fingerprint: str) -> Optional[Transaction]:
        resp = await self._run(
            lambda: self._transactions()
            .select("*")
            .eq("user_id", user_id)
            .eq("fingerprint", fingerprint)
            .limit(1)
            .execute()
        )
        return _from_row(resp.data[0]) if resp.data else None

    async def insert(self, transaction: Transaction) -> None:
        row = _to_row(transaction)
        try:
            await self._run(lambda: self._transactions().insert(row).execute())
        except APIError as e:
            if e.code != UNIQUE_VIOLATION:
                raise
            existing = await self._get(transaction.user_id, transaction.fingerprint)
            raise Conflict(transaction.fingerprint, existing) from e

    async def record_upload_batch(self, batch: UploadBatch) -> None:
        row = _batch_to_row(batch)
        await self._run(lambda: self.client.table(self.batches_table).insert(row).execute())

    async def list_transactions(
        self, user_id: str, txn_filter: Optional[TransactionFilter] = None
    ) -> List[Transaction]:
        txn_filter = txn_filter or TransactionFilter()

        def query():
            q = self._transactions().select("*").eq("user_id", user_id)
            if txn_filter.date_from:
                q = q.gte("transaction_date", txn_filter.date_from.isoformat())
            if txn_filter.date_to:
                q = q.lte("transaction_date", txn_filter.date_to.isoformat())
            if txn_filter.min_amount is not None:
                q = q.gte("amount_minor", txn_filter.min_amount)
            if txn_filter.max_amount is not None:
                q = q.lte("amount_minor", txn_filter.max_amount)
            q = q.order("transaction_date").order("fingerprint")
            if txn_filter.limit:
                q = q.limit(txn_filter.limit)
            return q.execute()

        resp = await self._run(query)
        return [_from_row(r) for r in resp.data]

    async def list_upload_batches(self, user_id: str) -> List[UploadBatch]:
        resp = await self._run(
            lambda: self.client.table(self.batches_table)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at")
            .execute()
        )
        return [_batch_from_row(r) for r in resp.data]

    async def ping(self) -> bool:
        try:
            await self._run(
                lambda: self._transactions().select("fingerprint").limit(1).execute()
            )
            return True
        except (StoreUnavailable, APIError) as e:
            logger.warning("Supabase ping failed: %s", e)
            return False

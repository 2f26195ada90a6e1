"""Transaction store contract and the in-process implementations.

The reconciliation engine only talks to a ``TransactionStore``. The store
is the single source of truth for dedup counts; nothing caches stored
transactions in-process.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from .exceptions import Conflict, StoreUnavailable
from .fingerprint import split_fingerprint
from .models import Transaction, TransactionFilter, UploadBatch

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionStore(ABC):
    """Persistence contract required by the reconciliation engine.

    Every method is a suspension point. Implementations raise
    ``StoreUnavailable`` for transient failures and ``Conflict`` when an
    insert hits an existing final fingerprint.
    """

    @abstractmethod
    async def count_by_base_fingerprint(self, user_id: str, base_fingerprint: str) -> int:
        """Number of stored transactions for the user sharing the base digest."""

    @abstractmethod
    async def exists(self, user_id: str, fingerprint: str) -> bool:
        """Whether the user already has a transaction with this final fingerprint."""

    @abstractmethod
    async def insert(self, transaction: Transaction) -> None:
        """Persist one fully fingerprinted transaction as a single write."""

    @abstractmethod
    async def record_upload_batch(self, batch: UploadBatch) -> None:
        pass

    @abstractmethod
    async def list_transactions(
        self, user_id: str, txn_filter: Optional[TransactionFilter] = None
    ) -> List[Transaction]:
        """User's transactions ordered by date, then fingerprint."""

    @abstractmethod
    async def list_upload_batches(self, user_id: str) -> List[UploadBatch]:
        pass

    async def ping(self) -> bool:
        return True


class InMemoryTransactionStore(TransactionStore):
    """Dict-backed store for tests and single-process development."""

    def __init__(self):
        self._transactions: Dict[str, Dict[str, Transaction]] = defaultdict(dict)
        self._batches: Dict[str, List[UploadBatch]] = defaultdict(list)

    async def count_by_base_fingerprint(self, user_id: str, base_fingerprint: str) -> int:
        return sum(
            1
            for fp in self._transactions.get(user_id, {})
            if split_fingerprint(fp)[0] == base_fingerprint
        )

    async def exists(self, user_id: str, fingerprint: str) -> bool:
        return fingerprint in self._transactions.get(user_id, {})

    async def insert(self, transaction: Transaction) -> None:
        if not transaction.user_id or not transaction.fingerprint:
            raise ValueError("transaction must carry user_id and final fingerprint")
        user_txns = self._transactions[transaction.user_id]
        existing = user_txns.get(transaction.fingerprint)
        if existing is not None:
            raise Conflict(transaction.fingerprint, existing)
        user_txns[transaction.fingerprint] = transaction

    async def record_upload_batch(self, batch: UploadBatch) -> None:
        self._batches[batch.user_id].append(batch)

    async def list_transactions(
        self, user_id: str, txn_filter: Optional[TransactionFilter] = None
    ) -> List[Transaction]:
        txn_filter = txn_filter or TransactionFilter()
        rows = sorted(
            (t for t in self._transactions.get(user_id, {}).values() if txn_filter.matches(t)),
            key=lambda t: (t.date, t.fingerprint),
        )
        return rows[: txn_filter.limit] if txn_filter.limit else rows

    async def list_upload_batches(self, user_id: str) -> List[UploadBatch]:
        return sorted(self._batches.get(user_id, []), key=lambda b: b.timestamp)


class RetryingTransactionStore(TransactionStore):
    """Wraps a store with per-call timeouts and bounded exponential backoff.

    Timeouts and ``StoreUnavailable`` are retried up to ``attempts`` times;
    the last failure propagates as ``StoreUnavailable``. ``Conflict`` and
    any other error propagate immediately.
    """

    def __init__(
        self,
        inner: TransactionStore,
        attempts: int = 3,
        base_delay: float = 0.1,
        timeout: Optional[float] = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.inner = inner
        self.attempts = attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self._sleep = sleep

    async def _call(self, name: str, op: Callable[[], Awaitable[T]]) -> T:
        last_error: Optional[BaseException] = None
        for attempt in range(self.attempts):
            try:
                if self.timeout is None:
                    return await op()
                return await asyncio.wait_for(op(), timeout=self.timeout)
            except (StoreUnavailable, asyncio.TimeoutError) as e:
                last_error = e
                if attempt + 1 < self.attempts:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        "store_retry op=%s attempt=%s delay=%.3f error=%r",
                        name, attempt + 1, delay, e,
                    )
                    await self._sleep(delay)

        raise StoreUnavailable(
            f"{name} failed after {self.attempts} attempts: {last_error!r}"
        ) from last_error

    async def count_by_base_fingerprint(self, user_id: str, base_fingerprint: str) -> int:
        return await self._call(
            "count_by_base_fingerprint",
            lambda: self.inner.count_by_base_fingerprint(user_id, base_fingerprint),
        )

    async def exists(self, user_id: str, fingerprint: str) -> bool:
        return await self._call("exists", lambda: self.inner.exists(user_id, fingerprint))

    async def insert(self, transaction: Transaction) -> None:
        return await self._call("insert", lambda: self.inner.insert(transaction))

    async def record_upload_batch(self, batch: UploadBatch) -> None:
        return await self._call("record_upload_batch", lambda: self.inner.record_upload_batch(batch))

    async def list_transactions(
        self, user_id: str, txn_filter: Optional[TransactionFilter] = None
    ) -> List[Transaction]:
        return await self._call(
            "list_transactions", lambda: self.inner.list_transactions(user_id, txn_filter)
        )

    async def list_upload_batches(self, user_id: str) -> List[UploadBatch]:
        return await self._call(
            "list_upload_batches", lambda: self.inner.list_upload_batches(user_id)
        )

    async def ping(self) -> bool:
        try:
            return await self._call("ping", self.inner.ping)
        except StoreUnavailable:
            return False

"""
Reconciliation Engine - merges normalized transactions into a user's history.

Each incoming transaction gets a final fingerprint ``{base}:{index}`` where
``index`` is the number of earlier rows in the same upload sharing the base
fingerprint. Re-uploading a statement, or an overlapping one, re-derives the
same final fingerprints for rows already recorded, so they are counted as
duplicates; extra occurrences get fresh indices and are accepted.

Reconciliation for one user is serialized: the occurrence bookkeeping reads
the store and must not interleave with another upload for the same user.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncIterator, Dict, Iterable, Optional

from .exceptions import Conflict, FingerprintCollision, ReconciliationInconsistency
from .fingerprint import base_fingerprint, final_fingerprint, normalize_description
from .models import ReconcileResult, RejectedRow, Transaction
from .normalizer import EMPTY_DESCRIPTION, ZERO_AMOUNT
from .store import TransactionStore

logger = logging.getLogger(__name__)


class UserLocks:
    """Per-user asyncio locks; different users never block each other."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self.get(user_id)
        async with lock:
            yield


def same_transaction(a: Transaction, b: Transaction) -> bool:
    """Semantic equality over the identity fields used for fingerprinting."""
    return (
        a.user_id == b.user_id
        and a.date == b.date
        and a.amount == b.amount
        and normalize_description(a.description) == normalize_description(b.description)
    )


class ReconciliationEngine:
    """Applies the fingerprint dedup policy against a TransactionStore."""

    def __init__(self, store: TransactionStore, locks: Optional[UserLocks] = None):
        self.store = store
        self.locks = locks or UserLocks()

    async def reconcile(
        self, user_id: str, upload_id: str, transactions: Iterable[Transaction]
    ) -> ReconcileResult:
        """Merge ``transactions`` (in file order) into the user's history.

        Returns accepted transactions (tagged with final fingerprint, user and
        upload id), the duplicate count and rows rejected as invalid.
        """
        if not user_id:
            raise ValueError("user_id is required")

        async with self.locks.hold(user_id):
            return await self._reconcile_locked(user_id, upload_id, list(transactions))

    async def _reconcile_locked(
        self, user_id: str, upload_id: str, transactions: list
    ) -> ReconcileResult:
        result = ReconcileResult()
        seen: Dict[str, int] = {}  # base -> occurrences so far in this upload
        stored: Dict[str, int] = {}  # base -> stored count before this upload wrote it

        for txn in transactions:
            if txn.amount == 0:
                result.rejected.append(RejectedRow(txn.source_line, ZERO_AMOUNT))
                continue
            if not txn.description.strip():
                result.rejected.append(RejectedRow(txn.source_line, EMPTY_DESCRIPTION))
                continue

            base = base_fingerprint(user_id, txn.date, txn.description, txn.amount)
            if base not in stored:
                stored[base] = await self.store.count_by_base_fingerprint(user_id, base)
            index = seen.get(base, 0)
            seen[base] = index + 1

            candidate = replace(
                txn,
                user_id=user_id,
                source_upload_id=upload_id,
                fingerprint=final_fingerprint(base, index),
            )

            exists = await self.store.exists(user_id, candidate.fingerprint)
            if exists != (index < stored[base]):
                logger.warning(
                    "occurrence_gap user=%s fingerprint=%s stored_count=%s exists=%s",
                    user_id, candidate.fingerprint, stored[base], exists,
                )
            if exists:
                result.duplicates += 1
                continue

            if await self._insert(candidate, upload_id):
                result.accepted.append(candidate)
            else:
                result.duplicates += 1

        logger.info(
            "Reconciled upload %s for %s: accepted=%s duplicates=%s rejected=%s",
            upload_id, user_id, len(result.accepted), result.duplicates, len(result.rejected),
        )
        return result

    async def _insert(self, candidate: Transaction, upload_id: str) -> bool:
        """Insert; True if the row now belongs to this upload, False if duplicate."""
        try:
            await self.store.insert(candidate)
            return True
        except Conflict as e:
            existing = e.existing
            if existing is None:
                raise ReconciliationInconsistency(
                    f"insert conflict on {candidate.fingerprint} after exists() returned False"
                ) from e
            if not same_transaction(existing, candidate):
                raise FingerprintCollision(
                    f"{candidate.fingerprint} is stored for a different transaction"
                ) from e
            # A retried insert that had already landed belongs to this upload
            return existing.source_upload_id == upload_id

"""Ledger service: session-gated access to the ingestion engine.

Every operation validates the session token first. An invalid or
expired token raises before the store is touched, so unauthenticated
requests never read or mutate a ledger.
"""

from typing import List, Optional

import structlog

from apps.api.core.auth import SessionAuthenticator
from packages.ingestion_engine.dialect import DialectDetector
from packages.ingestion_engine.import_transactions import ImportOutcome, import_statement
from packages.ingestion_engine.models import Transaction, TransactionFilter, UploadBatch
from packages.ingestion_engine.reconciliation import ReconciliationEngine
from packages.ingestion_engine.store import TransactionStore

logger = structlog.get_logger()


class LedgerService:
    def __init__(
        self,
        authenticator: SessionAuthenticator,
        engine: ReconciliationEngine,
        store: TransactionStore,
        detector: Optional[DialectDetector] = None,
    ):
        self.authenticator = authenticator
        self.engine = engine
        self.store = store
        self.detector = detector or DialectDetector()

    async def upload(
        self,
        token: Optional[str],
        filename: str,
        content: bytes,
        bank_hint: Optional[str] = None,
    ) -> ImportOutcome:
        """Import a statement into the ledger of the token's owner.

        Format errors propagate (nothing is written); per-row problems
        are reported in the returned batch.
        """
        user_id = await self.authenticator.validate(token)
        outcome = await import_statement(
            self.engine,
            self.store,
            user_id,
            filename,
            content,
            bank_hint=bank_hint,
            detector=self.detector,
        )
        logger.info(
            "upload_reconciled",
            user_id=user_id,
            upload_id=outcome.batch.upload_id,
            filename=filename,
            accepted=outcome.batch.accepted_count,
            duplicates=outcome.batch.duplicate_count,
            rejected=outcome.batch.rejected_count,
        )
        return outcome

    async def list_transactions(
        self, token: Optional[str], txn_filter: Optional[TransactionFilter] = None
    ) -> List[Transaction]:
        user_id = await self.authenticator.validate(token)
        return await self.store.list_transactions(user_id, txn_filter)

    async def list_uploads(self, token: Optional[str]) -> List[UploadBatch]:
        user_id = await self.authenticator.validate(token)
        return await self.store.list_upload_batches(user_id)

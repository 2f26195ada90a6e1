"""Pydantic schemas for the transactions domain."""

from typing import Optional

from pydantic import BaseModel

from packages.ingestion_engine.models import Transaction


class TransactionOut(BaseModel):
    """A stored transaction. ``amount`` is in minor units, negative for debits."""

    date: str
    description: str
    amount: int
    direction: str
    raw_balance: Optional[int] = None
    source_upload_id: str
    fingerprint: str

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "TransactionOut":
        return cls(**txn.to_dict())


class TransactionListResponse(BaseModel):
    transactions: list[TransactionOut]
    count: int

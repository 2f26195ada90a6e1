"""Transactions router: the caller's reconciled ledger."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from apps.api.core.auth import get_session_token
from apps.api.core.errors import ValidationError
from apps.api.deps import get_ledger_service
from apps.api.domains.ingestion.service import LedgerService
from apps.api.domains.transactions.schemas import TransactionListResponse, TransactionOut
from packages.ingestion_engine.models import TransactionFilter

router = APIRouter(tags=["transactions"])

MAX_PAGE_SIZE = 1000


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    date_from: Optional[date] = Query(None, description="Inclusive lower date bound"),
    date_to: Optional[date] = Query(None, description="Inclusive upper date bound"),
    min_amount: Optional[int] = Query(None, description="Inclusive, minor units"),
    max_amount: Optional[int] = Query(None, description="Inclusive, minor units"),
    limit: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE),
    token: Optional[str] = Depends(get_session_token),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """List the caller's transactions ordered by date."""
    if date_from and date_to and date_from > date_to:
        raise ValidationError("date_from must not be after date_to")
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise ValidationError("min_amount must not exceed max_amount")

    txn_filter = TransactionFilter(
        date_from=date_from,
        date_to=date_to,
        min_amount=min_amount,
        max_amount=max_amount,
        limit=limit,
    )
    transactions = await ledger.list_transactions(token, txn_filter)
    items = [TransactionOut.from_transaction(t) for t in transactions]
    return TransactionListResponse(transactions=items, count=len(items))

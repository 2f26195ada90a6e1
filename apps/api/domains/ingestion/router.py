"""Ingestion router: statement upload and upload history.

The router only handles transport concerns (file type, size, multipart
fields). Session validation, parsing and reconciliation happen in
LedgerService; engine errors are mapped to Problem Details by
core/errors.py.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from apps.api.core.auth import get_session_token
from apps.api.core.config import Settings, get_app_settings
from apps.api.core.errors import PayloadTooLargeError
from apps.api.deps import get_ledger_service
from apps.api.domains.ingestion.schemas import UploadBatchOut, UploadListResponse, UploadResponse
from apps.api.domains.ingestion.service import LedgerService

router = APIRouter(tags=["ingestion"])
logger = structlog.get_logger()

ALLOWED_EXTENSIONS = (".csv", ".tsv", ".txt")


@router.post("/upload", response_model=UploadResponse)
async def upload_statement(
    file: UploadFile = File(...),
    bank: Optional[str] = Form(None),
    token: Optional[str] = Depends(get_session_token),
    ledger: LedgerService = Depends(get_ledger_service),
    settings: Settings = Depends(get_app_settings),
):
    """Upload a CSV bank statement and merge it into the caller's ledger.

    Re-uploading the same file is safe: every row comes back as a
    duplicate and nothing new is stored.
    """
    filename = file.filename or ""
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Accepted: {', '.join(ALLOWED_EXTENSIONS)}",
        )

    contents = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(contents) > settings.MAX_UPLOAD_BYTES:
        logger.info("upload_rejected_too_large", filename=filename)
        raise PayloadTooLargeError(
            f"File too large (max {settings.MAX_UPLOAD_BYTES} bytes)"
        )
    if not contents.strip():
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    outcome = await ledger.upload(token, filename, contents, bank_hint=bank)
    return UploadResponse.from_batch(outcome.batch)


@router.get("/uploads", response_model=UploadListResponse)
async def list_uploads(
    token: Optional[str] = Depends(get_session_token),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """List the caller's upload audit records, oldest first."""
    batches = await ledger.list_uploads(token)
    uploads = [UploadBatchOut.from_batch(b) for b in batches]
    return UploadListResponse(uploads=uploads, count=len(uploads))

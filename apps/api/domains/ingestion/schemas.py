"""Pydantic schemas for the ingestion domain."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from packages.ingestion_engine.models import RejectedRow, UploadBatch


class RejectedRowOut(BaseModel):
    """A source row skipped during import."""

    line: Optional[int] = None
    reason: str
    detail: str = ""

    @classmethod
    def from_rejected(cls, row: RejectedRow) -> "RejectedRowOut":
        return cls(line=row.line_number, reason=row.reason, detail=row.detail)


class UploadResponse(BaseModel):
    """Result of reconciling one uploaded statement."""

    upload_id: str
    filename: str
    row_count: int
    accepted: int
    duplicates: int
    rejected: list[RejectedRowOut] = Field(default_factory=list)

    @classmethod
    def from_batch(cls, batch: UploadBatch) -> "UploadResponse":
        return cls(
            upload_id=batch.upload_id,
            filename=batch.source_filename,
            row_count=batch.row_count,
            accepted=batch.accepted_count,
            duplicates=batch.duplicate_count,
            rejected=[RejectedRowOut.from_rejected(r) for r in batch.rejected],
        )


class UploadBatchOut(BaseModel):
    upload_id: str
    filename: str
    timestamp: datetime
    row_count: int
    accepted: int
    duplicates: int
    rejected: int

    @classmethod
    def from_batch(cls, batch: UploadBatch) -> "UploadBatchOut":
        return cls(
            upload_id=batch.upload_id,
            filename=batch.source_filename,
            timestamp=batch.timestamp,
            row_count=batch.row_count,
            accepted=batch.accepted_count,
            duplicates=batch.duplicate_count,
            rejected=batch.rejected_count,
        )


class UploadListResponse(BaseModel):
    uploads: list[UploadBatchOut]
    count: int

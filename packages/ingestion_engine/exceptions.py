"""Exceptions raised by the ingestion engine.

Format errors abort a whole upload; ``RowRejected`` only ever escapes
``normalize_row`` and is turned into a ``RejectedRow`` by the batch
helpers. Store errors are raised by ``TransactionStore`` implementations.
"""

from typing import Optional

from .models import Transaction


class IngestionError(Exception):
    """Base class for engine errors."""


class UnrecognizedFormat(IngestionError):
    """No header or heuristic column pattern matched the upload."""


class AmbiguousAmountColumns(IngestionError):
    """Both a signed amount column and debit/credit columns are plausible."""


class RowRejected(IngestionError):
    """A single row could not be normalized."""

    def __init__(self, line_number: Optional[int], reason: str, detail: str = ""):
        self.line_number = line_number
        self.reason = reason
        self.detail = detail
        super().__init__(f"line {line_number}: {reason} {detail}".strip())


class ReconciliationInconsistency(IngestionError):
    """The store holds a different transaction under a fingerprint we derived."""


class FingerprintCollision(ReconciliationInconsistency):
    """Two semantically different transactions produced the same digest."""


class StoreError(Exception):
    """Base class for transaction store failures."""


class StoreUnavailable(StoreError):
    """Transient store failure (timeout, connection loss). Retryable."""


class Conflict(StoreError):
    """Insert hit an existing final fingerprint for the user."""

    def __init__(self, fingerprint: str, existing: Optional[Transaction] = None):
        self.fingerprint = fingerprint
        self.existing = existing
        super().__init__(f"fingerprint already stored: {fingerprint}")

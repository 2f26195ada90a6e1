"""
Statement Ledger Ingestion Engine

CSV dialect detection, normalization, fingerprinting and reconciliation.
"""

__version__ = "0.1.0"

from .dialect import DialectDetector, detect_dialect
from .exceptions import (
    AmbiguousAmountColumns,
    Conflict,
    FingerprintCollision,
    ReconciliationInconsistency,
    StoreUnavailable,
    UnrecognizedFormat,
)
from .fingerprint import base_fingerprint, final_fingerprint
from .import_transactions import ImportOutcome, import_statement, parse_statement
from .models import Dialect, RejectedRow, Transaction, TransactionFilter, UploadBatch
from .normalizer import normalize_row, normalize_rows
from .reconciliation import ReconciliationEngine, UserLocks
from .store import InMemoryTransactionStore, RetryingTransactionStore, TransactionStore

__all__ = [
    "DialectDetector",
    "detect_dialect",
    "AmbiguousAmountColumns",
    "Conflict",
    "FingerprintCollision",
    "ReconciliationInconsistency",
    "StoreUnavailable",
    "UnrecognizedFormat",
    "base_fingerprint",
    "final_fingerprint",
    "ImportOutcome",
    "import_statement",
    "parse_statement",
    "Dialect",
    "RejectedRow",
    "Transaction",
    "TransactionFilter",
    "UploadBatch",
    "normalize_row",
    "normalize_rows",
    "ReconciliationEngine",
    "UserLocks",
    "InMemoryTransactionStore",
    "RetryingTransactionStore",
    "TransactionStore",
]

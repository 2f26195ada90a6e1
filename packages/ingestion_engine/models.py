"""Canonical data structures shared by the ingestion engine."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class AmountStyle(str, Enum):
    """How a statement represents transaction amounts."""

    SIGNED = "signed"  # one signed amount column
    SPLIT = "split"  # separate debit / credit columns


@dataclass(frozen=True)
class RawRow:
    """One CSV line as read from the upload."""

    line_number: int
    cells: Tuple[str, ...]

    def cell(self, index: Optional[int]) -> str:
        """Return the stripped cell at ``index`` ("" when absent)."""
        if index is None or index >= len(self.cells):
            return ""
        return self.cells[index].strip()


@dataclass(frozen=True)
class Dialect:
    """Detected column layout and value conventions of one upload."""

    date_col: int
    description_col: int
    date_format: str
    amount_style: AmountStyle
    amount_col: Optional[int] = None
    debit_col: Optional[int] = None
    credit_col: Optional[int] = None
    balance_col: Optional[int] = None
    decimal_separator: str = "."
    delimiter: str = ","
    header_line: int = 0  # 0 = no header row
    bank: Optional[str] = None

    @property
    def split_amounts(self) -> bool:
        return self.amount_style is AmountStyle.SPLIT

    @property
    def required_columns(self) -> Tuple[int, ...]:
        if self.split_amounts:
            cols = (self.date_col, self.description_col, self.debit_col, self.credit_col)
        else:
            cols = (self.date_col, self.description_col, self.amount_col)
        return tuple(c for c in cols if c is not None)


@dataclass(frozen=True)
class Transaction:
    """Canonical transaction record.

    ``amount`` is in minor units (cents); negative values are debits.
    ``fingerprint`` is empty until the reconciliation engine assigns the
    final (occurrence-indexed) fingerprint.
    """

    date: date
    description: str
    amount: int
    raw_balance: Optional[int] = None
    source_upload_id: str = ""
    fingerprint: str = ""
    user_id: str = ""
    source_line: Optional[int] = field(default=None, compare=False)

    @property
    def direction(self) -> str:
        return "debit" if self.amount < 0 else "credit"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": self.amount,
            "direction": self.direction,
            "raw_balance": self.raw_balance,
            "source_upload_id": self.source_upload_id,
            "fingerprint": self.fingerprint,
        }


@dataclass(frozen=True)
class RejectedRow:
    """A row skipped during ingestion, with a machine-readable reason."""

    line_number: Optional[int]
    reason: str
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"line": self.line_number, "reason": self.reason, "detail": self.detail}


@dataclass(frozen=True)
class UploadBatch:
    """Audit record of one upload reconciliation run."""

    upload_id: str
    user_id: str
    timestamp: datetime
    source_filename: str
    row_count: int
    accepted_count: int
    duplicate_count: int
    rejected_count: int
    rejected: Tuple[RejectedRow, ...] = ()


@dataclass(frozen=True)
class TransactionFilter:
    """Optional listing filters; bounds are inclusive, amounts in minor units."""

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    min_amount: Optional[int] = None
    max_amount: Optional[int] = None
    limit: Optional[int] = None

    def matches(self, txn: Transaction) -> bool:
        if self.date_from and txn.date < self.date_from:
            return False
        if self.date_to and txn.date > self.date_to:
            return False
        if self.min_amount is not None and txn.amount < self.min_amount:
            return False
        if self.max_amount is not None and txn.amount > self.max_amount:
            return False
        return True


@dataclass
class ReconcileResult:
    """Outcome of merging one batch into a user's history."""

    accepted: List[Transaction] = field(default_factory=list)
    duplicates: int = 0
    rejected: List[RejectedRow] = field(default_factory=list)

"""
Row Normalizer - maps a detected dialect's raw rows into canonical transactions.

Amounts become signed minor-unit integers (cents), dates become plain
calendar dates. A row that cannot be normalized is rejected with a reason;
it never aborts the batch.
"""

import re
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple

from .exceptions import RowRejected
from .models import Dialect, RawRow, RejectedRow, Transaction

logger = logging.getLogger(__name__)

# Rejection reasons
MISSING_COLUMNS = "missing_columns"
INVALID_DATE = "invalid_date"
INVALID_AMOUNT = "invalid_amount"
ZERO_AMOUNT = "zero_amount"
EMPTY_DESCRIPTION = "empty_description"
BOTH_DEBIT_AND_CREDIT = "both_debit_and_credit"

_CURRENCY_PREFIX = re.compile(r"^(?:[A-Z]{3}\s+|[₹$€£¥]\s*)")
_CURRENCY_SUFFIX = re.compile(r"(?:\s+[A-Z]{3}|\s*[₹$€£¥])$")
_DIRECTION_SUFFIX = re.compile(r"\s*(CR|DR)\.?$", re.IGNORECASE)

# Thousands separators allowed for each decimal separator
_THOUSANDS = {".": ",' ", ",": ".' "}


def _amount_pattern(decimal_separator: str) -> "re.Pattern[str]":
    thousands = re.escape(_THOUSANDS[decimal_separator])
    dec = re.escape(decimal_separator)
    return re.compile(
        rf"^(?:\d{{1,3}}(?:[{thousands}]\d{{3}})+|\d+)(?:{dec}\d+)?$|^{dec}\d+$"
    )


_AMOUNT_PATTERNS = {sep: _amount_pattern(sep) for sep in _THOUSANDS}


def parse_amount(value: str, decimal_separator: str = ".") -> Optional[Decimal]:
    """Parse a statement amount cell into a Decimal.

    Handles currency symbols and ISO codes, parentheses for negatives,
    leading or trailing minus signs and CR/DR suffixes. Returns None when
    the text is not a number under ``decimal_separator``.
    """
    text = str(value or "").strip()
    if not text:
        return None

    negative = False
    suffix = _DIRECTION_SUFFIX.search(text)
    if suffix:
        negative = suffix.group(1).upper() == "DR"
        text = text[: suffix.start()].strip()

    if text.startswith("(") and text.endswith(")"):
        negative = not negative
        text = text[1:-1].strip()

    sign = ""
    if text[:1] in "+-":
        sign, text = text[0], text[1:].strip()
    elif text[-1:] in "+-":
        sign, text = text[-1], text[:-1].strip()

    text = _CURRENCY_PREFIX.sub("", text)
    text = _CURRENCY_SUFFIX.sub("", text).strip()
    if text[:1] in "+-" and not sign:
        sign, text = text[0], text[1:].strip()

    if not text or not _AMOUNT_PATTERNS[decimal_separator].match(text):
        return None

    thousands = _THOUSANDS[decimal_separator]
    digits = "".join(ch for ch in text if ch not in thousands)
    if decimal_separator == ",":
        digits = digits.replace(",", ".")
    try:
        number = Decimal(digits)
    except InvalidOperation:
        return None

    if sign == "-":
        negative = not negative
    return -number if negative else number


def to_minor_units(amount: Decimal) -> int:
    """Convert a 2-decimal currency amount to cents, rounding half away from zero."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_date(value: str, date_format: str) -> Optional[date]:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return datetime.strptime(text, date_format).date()
    except ValueError:
        return None


def clean_description(value: str) -> str:
    """Trim and collapse internal whitespace."""
    return " ".join(str(value or "").split())


def _signed_amount(row: RawRow, dialect: Dialect) -> int:
    if dialect.split_amounts:
        debit_text = row.cell(dialect.debit_col)
        credit_text = row.cell(dialect.credit_col)
        debit = parse_amount(debit_text, dialect.decimal_separator) if debit_text else None
        credit = parse_amount(credit_text, dialect.decimal_separator) if credit_text else None
        if (debit_text and debit is None) or (credit_text and credit is None):
            bad = debit_text if debit_text and debit is None else credit_text
            raise RowRejected(row.line_number, INVALID_AMOUNT, f"not a number: {bad!r}")

        # A zero-valued cell counts as empty
        debit = debit if debit else None
        credit = credit if credit else None
        if debit is not None and credit is not None:
            raise RowRejected(row.line_number, BOTH_DEBIT_AND_CREDIT)
        if debit is None and credit is None:
            if debit_text or credit_text:
                raise RowRejected(row.line_number, ZERO_AMOUNT)
            raise RowRejected(row.line_number, INVALID_AMOUNT, "no debit or credit value")
        if debit is not None:
            return -abs(to_minor_units(debit))
        return abs(to_minor_units(credit))

    text = row.cell(dialect.amount_col)
    amount = parse_amount(text, dialect.decimal_separator)
    if amount is None:
        raise RowRejected(row.line_number, INVALID_AMOUNT, f"not a number: {text!r}")
    return to_minor_units(amount)


def normalize_row(row: RawRow, dialect: Dialect) -> Transaction:
    """Normalize one RawRow; raises RowRejected when the row is unusable."""
    if any(col >= len(row.cells) for col in dialect.required_columns):
        raise RowRejected(
            row.line_number,
            MISSING_COLUMNS,
            f"expected at least {max(dialect.required_columns) + 1} cells, got {len(row.cells)}",
        )

    raw_date = row.cell(dialect.date_col)
    txn_date = parse_date(raw_date, dialect.date_format)
    if txn_date is None:
        raise RowRejected(
            row.line_number, INVALID_DATE, f"{raw_date!r} does not match {dialect.date_format}"
        )

    amount = _signed_amount(row, dialect)
    if amount == 0:
        raise RowRejected(row.line_number, ZERO_AMOUNT)

    description = clean_description(row.cell(dialect.description_col))
    if not description:
        raise RowRejected(row.line_number, EMPTY_DESCRIPTION)

    balance = None
    balance_text = row.cell(dialect.balance_col)
    if balance_text:
        parsed_balance = parse_amount(balance_text, dialect.decimal_separator)
        if parsed_balance is not None:
            balance = to_minor_units(parsed_balance)
        else:
            logger.debug("Ignoring unparseable balance on line %s: %r", row.line_number, balance_text)

    return Transaction(
        date=txn_date,
        description=description,
        amount=amount,
        raw_balance=balance,
        source_line=row.line_number,
    )


def normalize_rows(
    rows: Iterable[RawRow], dialect: Dialect
) -> Tuple[List[Transaction], List[RejectedRow]]:
    """Normalize rows in file order, collecting rejections instead of raising."""
    transactions: List[Transaction] = []
    rejected: List[RejectedRow] = []

    for row in rows:
        try:
            transactions.append(normalize_row(row, dialect))
        except RowRejected as e:
            logger.info("Rejected line %s: %s %s", e.line_number, e.reason, e.detail)
            rejected.append(RejectedRow(e.line_number, e.reason, e.detail))

    return transactions, rejected

"""
CSV Dialect Detector - identifies column layout and value conventions.

Detection order:
  1. Header row matched against a table of column-name synonyms.
  2. Positional heuristics validated on sampled data rows.

A bank hint selects a profile that can settle an ambiguous amount layout
and pin the date format / decimal separator for known exports.
"""

import csv
import io
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .exceptions import AmbiguousAmountColumns, UnrecognizedFormat
from .models import AmountStyle, Dialect, RawRow
from .normalizer import parse_amount

logger = logging.getLogger(__name__)

ENCODINGS = ["utf-8-sig", "utf-8", "cp1252", "latin-1"]
DELIMITERS = [",", ";", "\t", "|"]

# Statements often start with account / period lines before the header
HEADER_SCAN_ROWS = 20
DEFAULT_SAMPLE_ROWS = 50
DEFAULT_THRESHOLD = 0.9

# Order matters: ties go to the earlier pattern (ISO first, day-first before
# month-first). A day/month tie is logged; a bank profile pins the format.
DATE_PATTERNS = [
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%m-%d-%Y",
    "%d.%m.%Y",
    "%d/%m/%y",
    "%m/%d/%y",
    "%d %b %Y",
    "%d-%b-%Y",
    "%d %B %Y",
    "%b %d, %Y",
]

# Column-name synonyms per semantic field, compared after normalize_header()
COLUMN_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "date": (
        "date",
        "transaction date",
        "txn date",
        "trans date",
        "tran date",
        "posting date",
        "posted date",
        "date posted",
        "value date",
        "booking date",
        "completed date",
    ),
    "description": (
        "description",
        "desc",
        "details",
        "transaction details",
        "transaction description",
        "original description",
        "particulars",
        "narration",
        "memo",
        "payee",
        "name",
        "merchant",
        "remarks",
    ),
    "amount": (
        "amount",
        "transaction amount",
        "txn amount",
        "amt",
        "value",
        "net amount",
        "amount usd",
        "amount eur",
        "amount gbp",
        "amount inr",
    ),
    "debit": (
        "debit",
        "debits",
        "debit amount",
        "withdrawal",
        "withdrawals",
        "withdrawal amt",
        "withdrawal amount",
        "money out",
        "paid out",
        "outflow",
        "dr",
    ),
    "credit": (
        "credit",
        "credits",
        "credit amount",
        "deposit",
        "deposits",
        "deposit amt",
        "deposit amount",
        "money in",
        "paid in",
        "inflow",
        "cr",
    ),
    "balance": (
        "balance",
        "running balance",
        "running bal",
        "closing balance",
        "available balance",
    ),
}


@dataclass(frozen=True)
class BankProfile:
    """Known conventions of one bank's export."""

    name: str
    amount_style: Optional[AmountStyle] = None
    date_format: Optional[str] = None
    decimal_separator: Optional[str] = None
    synonyms: Dict[str, Tuple[str, ...]] = field(default_factory=dict)


BANK_PROFILES: Dict[str, BankProfile] = {
    "chase": BankProfile("chase", AmountStyle.SIGNED, "%m/%d/%Y", "."),
    "barclays": BankProfile("barclays", AmountStyle.SIGNED, "%d/%m/%Y", "."),
    "monzo": BankProfile("monzo", AmountStyle.SIGNED, "%d/%m/%Y", "."),
    "hdfc": BankProfile(
        "hdfc",
        AmountStyle.SPLIT,
        "%d/%m/%y",
        ".",
        synonyms={"balance": ("closing balance",), "description": ("narration",)},
    ),
    "icici": BankProfile("icici", AmountStyle.SPLIT, "%d/%m/%Y", "."),
    "sbi": BankProfile("sbi", AmountStyle.SPLIT, "%d %b %Y", "."),
    "axis": BankProfile("axis", AmountStyle.SPLIT, "%d-%m-%Y", "."),
    "generic": BankProfile("generic"),
    # Bare layout hints
    "signed": BankProfile("signed", AmountStyle.SIGNED),
    "split": BankProfile("split", AmountStyle.SPLIT),
}

_EXCEL_MAGIC = (b"PK\x03\x04", b"\xd0\xcf\x11\xe0")


def normalize_header(text: str) -> str:
    """Lowercase, replace punctuation with spaces and collapse whitespace."""
    return " ".join(re.sub(r"[\W_]+", " ", str(text).lower()).split())


def decode_content(content: Union[bytes, str]) -> str:
    """Decode an upload, trying common bank-export encodings in order."""
    if isinstance(content, str):
        return content
    if content.startswith(_EXCEL_MAGIC):
        raise UnrecognizedFormat("File looks like an Excel workbook, not CSV")

    for encoding in ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue

    raise UnrecognizedFormat("Could not decode file with any known encoding")


def _iter_rows(text: str, delimiter: str) -> List[RawRow]:
    """Split text into non-blank RawRows with 1-based starting line numbers."""
    reader = csv.reader(io.StringIO(text), delimiter=delimiter)
    rows = []
    last_line = 0
    try:
        for cells in reader:
            line_number = last_line + 1
            last_line = reader.line_num
            if not any(c.strip() for c in cells):
                continue
            rows.append(RawRow(line_number=line_number, cells=tuple(cells)))
    except csv.Error as e:
        raise UnrecognizedFormat(f"Malformed CSV near line {reader.line_num}: {e}") from e
    return rows


def sniff_delimiter(text: str) -> str:
    """Pick the delimiter giving the widest consistent row shape."""
    sample = "\n".join(text.splitlines()[: HEADER_SCAN_ROWS * 2])
    best, best_width = ",", 1

    for delimiter in DELIMITERS:
        widths = [len(r.cells) for r in _iter_rows(sample, delimiter)]
        if not widths:
            continue
        modal = max(set(widths), key=widths.count)
        consistency = widths.count(modal) / len(widths)
        if modal > best_width and consistency >= 0.5:
            best, best_width = delimiter, modal

    return best


def read_rows(text: str, dialect: Dialect) -> List[RawRow]:
    """Data rows of a decoded upload (everything after the header line)."""
    return [
        row
        for row in _iter_rows(text, dialect.delimiter)
        if row.line_number > dialect.header_line
    ]


def _swap_day_month(fmt: str) -> str:
    return fmt.replace("%d", "%_").replace("%m", "%d").replace("%_", "%m")


def _non_empty(series: pd.Series) -> pd.Series:
    return series[series != ""]


def _sample_frame(rows: Sequence[RawRow]) -> pd.DataFrame:
    width = max((len(r.cells) for r in rows), default=0)
    padded = [[c.strip() for c in r.cells] + [""] * (width - len(r.cells)) for r in rows]
    return pd.DataFrame(padded, columns=range(width), dtype=str)


class DialectDetector:
    """Detects the Dialect of a CSV bank statement.

    Args:
        synonyms: Column-name synonym table (defaults to COLUMN_SYNONYMS)
        profiles: Bank profiles selectable by hint (defaults to BANK_PROFILES)
        sample_size: Number of data rows inspected
        threshold: Share of sampled values that must parse for a column
                   to count as date-like or amount-like
    """

    def __init__(
        self,
        synonyms: Optional[Dict[str, Tuple[str, ...]]] = None,
        profiles: Optional[Dict[str, BankProfile]] = None,
        sample_size: int = DEFAULT_SAMPLE_ROWS,
        threshold: float = DEFAULT_THRESHOLD,
    ):
        self.synonyms = synonyms or COLUMN_SYNONYMS
        self.profiles = profiles or BANK_PROFILES
        self.sample_size = sample_size
        self.threshold = threshold

    # ---- public API ----

    def detect(self, content: Union[bytes, str], bank_hint: Optional[str] = None) -> Dialect:
        text = decode_content(content)
        delimiter = sniff_delimiter(text)
        rows = _iter_rows(text, delimiter)
        if not rows:
            raise UnrecognizedFormat("File contains no rows")

        profile = self._resolve_profile(bank_hint)
        synonyms = self._synonyms_for(profile)

        header = self._find_header(rows[:HEADER_SCAN_ROWS], synonyms)
        if header is not None:
            header_idx, mapping = header
            header_line = rows[header_idx].line_number
            data = rows[header_idx + 1 : header_idx + 1 + self.sample_size]
            if not data:
                raise UnrecognizedFormat("Header found but no data rows follow it")
            dialect = self._from_header(mapping, data, profile)
            logger.info(f"Matched header on line {header_line}: {mapping}")
        else:
            header_line, dialect = self._from_heuristics(rows, profile)
            logger.info(f"Inferred columns positionally (header line {header_line})")

        return Dialect(
            date_col=dialect["date"],
            description_col=dialect["description"],
            date_format=dialect["date_format"],
            amount_style=dialect["amount_style"],
            amount_col=dialect.get("amount"),
            debit_col=dialect.get("debit"),
            credit_col=dialect.get("credit"),
            balance_col=dialect.get("balance"),
            decimal_separator=dialect["decimal_separator"],
            delimiter=delimiter,
            header_line=header_line,
            bank=profile.name if profile else None,
        )

    # ---- profiles ----

    def _resolve_profile(self, bank_hint: Optional[str]) -> Optional[BankProfile]:
        if not bank_hint:
            return None
        key = normalize_header(bank_hint).replace(" ", "_")
        profile = self.profiles.get(key)
        if profile is None:
            logger.warning(f"Unknown bank hint {bank_hint!r}; ignoring")
        return profile

    def _synonyms_for(self, profile: Optional[BankProfile]) -> Dict[str, Tuple[str, ...]]:
        if not profile or not profile.synonyms:
            return self.synonyms
        merged = dict(self.synonyms)
        for fld, extra in profile.synonyms.items():
            merged[fld] = tuple(extra) + tuple(merged.get(fld, ()))
        return merged

    # ---- header matching ----

    def _match_row(self, row: RawRow, synonyms: Dict[str, Tuple[str, ...]]) -> Dict[str, int]:
        mapping: Dict[str, int] = {}
        for idx, cell in enumerate(row.cells):
            name = normalize_header(cell)
            if not name:
                continue
            for fld, names in synonyms.items():
                if fld not in mapping and name in names:
                    mapping[fld] = idx
                    break
        return mapping

    def _find_header(
        self, rows: Sequence[RawRow], synonyms: Dict[str, Tuple[str, ...]]
    ) -> Optional[Tuple[int, Dict[str, int]]]:
        for i, row in enumerate(rows):
            mapping = self._match_row(row, synonyms)
            has_amount = "amount" in mapping or ("debit" in mapping and "credit" in mapping)
            if "date" in mapping and "description" in mapping and has_amount:
                return i, mapping
        return None

    def _from_header(
        self, mapping: Dict[str, int], data: Sequence[RawRow], profile: Optional[BankProfile]
    ) -> Dict:
        frame = _sample_frame(data)

        def column(idx: int) -> pd.Series:
            return frame[idx] if idx in frame.columns else pd.Series([""] * len(frame), dtype=str)

        date_format, ratio = self._best_date_format(column(mapping["date"]), profile)
        if date_format is None or ratio < self.threshold:
            raise UnrecognizedFormat(
                f"Date column {mapping['date']} does not match a supported date pattern"
            )

        signed = None
        if "amount" in mapping:
            sep = self._amount_separator(column(mapping["amount"]), profile)
            if sep is not None:
                signed = sep

        split = None
        if "debit" in mapping and "credit" in mapping:
            split = self._split_separator(column(mapping["debit"]), column(mapping["credit"]), profile)

        style, decimal_separator = self._choose_style(signed, split, profile)
        result = {
            "date": mapping["date"],
            "description": mapping["description"],
            "date_format": date_format,
            "amount_style": style,
            "decimal_separator": decimal_separator,
            "balance": mapping.get("balance"),
        }
        if style is AmountStyle.SIGNED:
            result["amount"] = mapping["amount"]
        else:
            result["debit"] = mapping["debit"]
            result["credit"] = mapping["credit"]
        return result

    # ---- heuristics ----

    def _from_heuristics(
        self, rows: Sequence[RawRow], profile: Optional[BankProfile]
    ) -> Tuple[int, Dict]:
        # Profile assuming a header row first; fall back to treating row 0 as data
        probe = rows[1 : 1 + self.sample_size] if len(rows) > 1 else rows[: self.sample_size]
        date_col, date_format = self._find_date_column(_sample_frame(probe), profile)
        if date_col is None:
            raise UnrecognizedFormat(
                "No header matched and no column looks like a date column"
            )

        first = rows[0]
        first_is_header = pd.isna(
            pd.to_datetime(first.cell(date_col), format=date_format, errors="coerce")
        )
        header_line = first.line_number if first_is_header else 0
        data = rows[1 : 1 + self.sample_size] if first_is_header else rows[: self.sample_size]
        if not data:
            raise UnrecognizedFormat("No data rows to inspect")
        frame = _sample_frame(data)

        amount_cols: Dict[int, str] = {}
        for idx in frame.columns:
            if idx == date_col:
                continue
            sep = self._amount_separator(frame[idx], profile)
            if sep is not None:
                amount_cols[idx] = sep

        text_cols = [
            idx for idx in frame.columns if idx != date_col and idx not in amount_cols
        ]
        lengths = {
            idx: _non_empty(frame[idx]).str.len().mean() for idx in text_cols
            if len(_non_empty(frame[idx]))
        }
        if not lengths:
            raise UnrecognizedFormat("No column looks like a description column")
        description_col = max(lengths, key=lambda idx: (lengths[idx], -idx))

        n = len(frame)
        ordered = sorted(amount_cols)
        full = [idx for idx in ordered if len(_non_empty(frame[idx])) / n >= self.threshold]

        # Debit/credit: two amount columns never both non-zero, together covering the rows
        split_pair = None
        for i, debit in enumerate(ordered):
            for credit in ordered[i + 1 :]:
                sep = self._split_separator(frame[debit], frame[credit], profile)
                if sep is None:
                    continue
                covered = ((frame[debit] != "") | (frame[credit] != "")).mean()
                if covered >= self.threshold:
                    split_pair = (debit, credit, sep)
                    break
            if split_pair:
                break

        paired = set(split_pair[:2]) if split_pair else set()
        others = sorted(
            (idx for idx in full if idx not in paired),
            key=lambda idx: (-self._monetary_ratio(frame[idx]), idx),
        )
        balance = None
        if split_pair:
            after = [idx for idx in full if idx not in paired and idx > split_pair[1]]
            balance = after[-1] if after else None
            candidates = [
                idx for idx in others
                if idx != balance and self._monetary_ratio(frame[idx]) >= 0.5
            ]
        else:
            candidates = others[:1]
            if candidates:
                trailing = [idx for idx in full if idx > candidates[0]]
                balance = trailing[-1] if trailing else None

        signed = (candidates[0], amount_cols[candidates[0]]) if candidates else None
        style, decimal_separator = self._choose_style(
            signed[1] if signed else None,
            split_pair[2] if split_pair else None,
            profile,
        )

        result = {
            "date": date_col,
            "description": description_col,
            "date_format": date_format,
            "amount_style": style,
            "decimal_separator": decimal_separator,
            "balance": balance,
        }
        if style is AmountStyle.SIGNED:
            result["amount"] = signed[0]
        else:
            result["debit"], result["credit"] = split_pair[0], split_pair[1]
        return header_line, result

    def _find_date_column(
        self, frame: pd.DataFrame, profile: Optional[BankProfile]
    ) -> Tuple[Optional[int], Optional[str]]:
        for idx in frame.columns:
            date_format, ratio = self._best_date_format(frame[idx], profile)
            if date_format is not None and ratio >= self.threshold:
                return idx, date_format
        return None, None

    # ---- column profiling ----

    def _best_date_format(
        self, series: pd.Series, profile: Optional[BankProfile]
    ) -> Tuple[Optional[str], float]:
        values = _non_empty(series)
        if values.empty:
            return None, 0.0

        def ratio(fmt: str) -> float:
            return float(pd.to_datetime(values, format=fmt, errors="coerce").notna().mean())

        if profile and profile.date_format:
            pinned = ratio(profile.date_format)
            if pinned >= self.threshold:
                return profile.date_format, pinned

        ratios = {fmt: ratio(fmt) for fmt in DATE_PATTERNS}
        best_ratio = max(ratios.values())
        if not best_ratio:
            return None, 0.0
        matches = [fmt for fmt in DATE_PATTERNS if ratios[fmt] == best_ratio]
        best = matches[0]
        if best_ratio >= self.threshold and _swap_day_month(best) in matches:
            logger.warning(
                f"Day/month order is ambiguous ({best} vs {_swap_day_month(best)}); "
                f"using {best}. Pass a bank hint to pin the format."
            )
        return best, best_ratio

    def _amount_separator(self, series: pd.Series, profile: Optional[BankProfile]) -> Optional[str]:
        """Decimal separator under which the column is amount-like, else None."""
        values = _non_empty(series)
        if values.empty:
            return None

        separators = [profile.decimal_separator] if profile and profile.decimal_separator else [".", ","]
        plausible = [
            sep
            for sep in separators
            if values.map(lambda v: parse_amount(v, sep) is not None).mean() >= self.threshold
        ]
        if not plausible:
            return None
        if len(plausible) == 1:
            return plausible[0]

        comma_decimals = values.str.contains(r",\d{1,2}$", regex=True).any()
        dot_decimals = values.str.contains(r"\.\d{1,2}$", regex=True).any()
        return "," if comma_decimals and not dot_decimals else "."

    def _split_separator(
        self, debit: pd.Series, credit: pd.Series, profile: Optional[BankProfile]
    ) -> Optional[str]:
        """Separator if debit/credit behave as split columns, else None.

        Both columns must be amount-like over their non-empty values and at
        most one of them may hold a non-zero value on any sampled row.
        """
        combined = pd.concat([_non_empty(debit), _non_empty(credit)])
        if combined.empty:
            return None
        sep = self._amount_separator(combined, profile)
        if sep is None:
            return None

        def filled(series: pd.Series) -> pd.Series:
            return series.map(lambda v: bool(parse_amount(v, sep)))

        if (filled(debit) & filled(credit)).any():
            return None
        return sep

    @staticmethod
    def _monetary_ratio(series: pd.Series) -> float:
        values = _non_empty(series)
        if values.empty:
            return 0.0
        return float(values.str.contains(r"[.,]\d{2}\)?$|^[-(]", regex=True).mean())

    def _choose_style(
        self,
        signed_sep: Optional[str],
        split_sep: Optional[str],
        profile: Optional[BankProfile],
    ) -> Tuple[AmountStyle, str]:
        if signed_sep and split_sep:
            if not profile or profile.amount_style is None:
                raise AmbiguousAmountColumns(
                    "Both a signed amount column and debit/credit columns are present; "
                    "supply a bank hint to choose"
                )
            style = profile.amount_style
        elif signed_sep:
            style = AmountStyle.SIGNED
        elif split_sep:
            style = AmountStyle.SPLIT
        else:
            raise UnrecognizedFormat("No usable amount or debit/credit columns found")

        if profile and profile.amount_style and profile.amount_style is not style:
            logger.warning(
                f"Bank hint {profile.name!r} expects {profile.amount_style.value} amounts "
                f"but only {style.value} columns are usable"
            )
        return style, signed_sep if style is AmountStyle.SIGNED else split_sep


def detect_dialect(
    content: Union[bytes, str],
    bank_hint: Optional[str] = None,
    sample_size: int = DEFAULT_SAMPLE_ROWS,
) -> Dialect:
    """
    Convenience function to detect the dialect of a CSV statement.

    Args:
        content: Raw upload bytes or decoded text
        bank_hint: Optional bank identifier (chase, hdfc, ...) or layout
                   hint (signed, split)
        sample_size: Number of data rows inspected

    Returns:
        Immutable Dialect describing columns and conventions
    """
    return DialectDetector(sample_size=sample_size).detect(content, bank_hint)

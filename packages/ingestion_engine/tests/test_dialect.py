"""
Tests for CSV dialect detection: header synonyms, heuristics and bank hints.
"""

import logging

import pytest

from packages.ingestion_engine.dialect import (
    DialectDetector,
    decode_content,
    detect_dialect,
    normalize_header,
    read_rows,
    sniff_delimiter,
)
from packages.ingestion_engine.exceptions import AmbiguousAmountColumns, UnrecognizedFormat
from packages.ingestion_engine.models import AmountStyle


def test_normalize_header():
    assert normalize_header("  Withdrawal_Amt. ") == "withdrawal amt"
    assert normalize_header("Transaction-Date") == "transaction date"


class TestHeaderDetection:
    def test_signed_amount_header(self):
        csv_data = (
            "Date,Description,Amount\n"
            "2024-01-15,Coffee,-4.50\n"
            "2024-01-16,Salary,2000.00\n"
        )
        dialect = detect_dialect(csv_data)

        assert dialect.date_col == 0
        assert dialect.description_col == 1
        assert dialect.amount_col == 2
        assert dialect.amount_style is AmountStyle.SIGNED
        assert dialect.date_format == "%Y-%m-%d"
        assert dialect.header_line == 1
        assert dialect.delimiter == ","
        assert dialect.decimal_separator == "."

    def test_split_debit_credit_header(self):
        csv_data = (
            "Date,Narration,Withdrawal Amt,Deposit Amt,Closing Balance\n"
            "15/01/24,ATM WDL,500.00,,10000.00\n"
            "16/01/24,SALARY JAN,,50000.00,60000.00\n"
        )
        dialect = detect_dialect(csv_data)

        assert dialect.amount_style is AmountStyle.SPLIT
        assert dialect.debit_col == 2
        assert dialect.credit_col == 3
        assert dialect.balance_col == 4
        assert dialect.amount_col is None
        assert dialect.date_format == "%d/%m/%y"

    def test_semicolon_and_comma_decimals(self):
        csv_data = (
            "Date;Description;Amount\n"
            "15.01.2024;Kaffee;-4,50\n"
            "16.01.2024;Gehalt;2.000,00\n"
        )
        dialect = detect_dialect(csv_data)

        assert dialect.delimiter == ";"
        assert dialect.decimal_separator == ","
        assert dialect.date_format == "%d.%m.%Y"

    def test_tab_delimited(self):
        csv_data = "Date\tDetails\tAmount\n2024-01-15\tCoffee\t-4.50\n2024-01-16\tTea\t-3.00\n"
        dialect = detect_dialect(csv_data)
        assert dialect.delimiter == "\t"
        assert dialect.description_col == 1

    def test_preamble_lines_before_header(self):
        csv_data = (
            "Account Statement\n"
            "Account: 1234\n"
            "\n"
            "Date,Description,Amount\n"
            "2024-01-15,Coffee,-4.50\n"
            "2024-01-16,Tea,-3.00\n"
        )
        dialect = detect_dialect(csv_data)
        assert dialect.header_line == 4

        rows = read_rows(csv_data, dialect)
        assert [r.line_number for r in rows] == [5, 6]

    def test_header_without_data_rows(self):
        with pytest.raises(UnrecognizedFormat):
            detect_dialect("Date,Description,Amount\n")


class TestHeuristicDetection:
    def test_headerless_file(self):
        csv_data = (
            "2024-01-15,Coffee Shop,-4.50,995.50\n"
            "2024-01-16,Grocery Store,-20.00,975.50\n"
            "2024-01-17,Salary,2000.00,2975.50\n"
        )
        dialect = detect_dialect(csv_data)

        assert dialect.header_line == 0
        assert dialect.date_col == 0
        assert dialect.description_col == 1
        assert dialect.amount_col == 2
        assert dialect.balance_col == 3
        assert dialect.amount_style is AmountStyle.SIGNED

    def test_unknown_header_names_fall_back_to_positions(self):
        csv_data = (
            "When,What,How Much\n"
            "2024-01-15,Coffee,-4.50\n"
            "2024-01-16,Tea,-3.00\n"
        )
        dialect = detect_dialect(csv_data)

        assert dialect.header_line == 1
        assert dialect.date_col == 0
        assert dialect.description_col == 1
        assert dialect.amount_col == 2

    def test_no_date_column(self):
        with pytest.raises(UnrecognizedFormat):
            detect_dialect("hello world\nfoo bar\nbaz qux\n")


class TestAmbiguityAndHints:
    CSV = (
        "Date,Description,Amount,Debit,Credit\n"
        "2024-01-15,Coffee,-4.50,4.50,\n"
        "2024-01-16,Salary,2000.00,,2000.00\n"
    )

    def test_both_layouts_without_hint_is_ambiguous(self):
        with pytest.raises(AmbiguousAmountColumns):
            detect_dialect(self.CSV)

    def test_split_hint_resolves(self):
        dialect = detect_dialect(self.CSV, bank_hint="split")
        assert dialect.amount_style is AmountStyle.SPLIT
        assert (dialect.debit_col, dialect.credit_col) == (3, 4)

    def test_bank_profile_resolves(self):
        dialect = detect_dialect(self.CSV, bank_hint="Chase")
        assert dialect.amount_style is AmountStyle.SIGNED
        assert dialect.bank == "chase"

    def test_profile_pins_month_first_dates(self):
        csv_data = "Posting Date,Description,Amount\n01/02/2024,Coffee,-4.50\n"
        assert detect_dialect(csv_data).date_format == "%d/%m/%Y"
        assert detect_dialect(csv_data, bank_hint="chase").date_format == "%m/%d/%Y"

    def test_unknown_hint_is_ignored(self):
        dialect = detect_dialect(
            "Date,Description,Amount\n2024-01-15,Coffee,-4.50\n", bank_hint="nosuchbank"
        )
        assert dialect.bank is None


class TestDateOrder:
    US_STATEMENT = "Date,Description,Amount\n01/05/2024,Coffee,-4.50\n02/03/2024,Salary,2000.00\n"

    def test_day_month_tie_defaults_day_first_and_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            dialect = detect_dialect(self.US_STATEMENT)

        assert dialect.date_format == "%d/%m/%Y"
        assert "Day/month order is ambiguous" in caplog.text

    def test_bank_hint_settles_tie_without_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            dialect = detect_dialect(self.US_STATEMENT, bank_hint="chase")

        assert dialect.date_format == "%m/%d/%Y"
        assert "ambiguous" not in caplog.text

    def test_day_above_twelve_resolves_month_first(self, caplog):
        csv_data = "Date,Description,Amount\n01/05/2024,Coffee,-4.50\n01/25/2024,Rent,-900.00\n"
        with caplog.at_level(logging.WARNING):
            dialect = detect_dialect(csv_data)

        assert dialect.date_format == "%m/%d/%Y"
        assert "ambiguous" not in caplog.text

    def test_iso_dates_never_warn(self, caplog):
        with caplog.at_level(logging.WARNING):
            detect_dialect("Date,Description,Amount\n2024-01-05,Coffee,-4.50\n")
        assert "ambiguous" not in caplog.text


class TestDecoding:
    def test_cp1252_fallback(self):
        text = decode_content("Date,Description,Amount\n2024-01-15,Café,-4.50\n".encode("cp1252"))
        assert "Café" in text

    def test_utf8_bom_is_stripped(self):
        text = decode_content("\ufeffDate,Description,Amount\n".encode("utf-8"))
        assert text.startswith("Date")

    def test_excel_workbook_rejected(self):
        with pytest.raises(UnrecognizedFormat):
            decode_content(b"PK\x03\x04rest-of-zip")

    def test_empty_file(self):
        with pytest.raises(UnrecognizedFormat):
            DialectDetector().detect(b"")

    def test_oversized_field_is_unrecognized(self):
        csv_data = (
            "Date,Description,Amount\n"
            '2024-01-05,"' + "x" * 200_000 + '",-4.50\n'
            "2024-01-06,Salary,2000.00\n"
        )
        with pytest.raises(UnrecognizedFormat, match="Malformed CSV"):
            DialectDetector().detect(csv_data)


def test_sniff_defaults_to_comma():
    assert sniff_delimiter("just one column\nanother\n") == ","

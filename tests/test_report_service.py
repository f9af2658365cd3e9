"""
Tests for the Excel statement export
"""
import io
from datetime import datetime
from decimal import Decimal

import pytest
from openpyxl import load_workbook

from water_ledger.domain.records import CustomerRecord, TransactionRecord, TransactionType
from water_ledger.domain.services.report_service import (
    HEADERS,
    _sanitize_text,
    build_transactions_workbook,
)

WHEN = datetime(2024, 3, 7, 14, 5)


def _customer(name="Maria Lopez"):
    return CustomerRecord(
        id="c1", membership_id="04213", name=name, balance=Decimal("42.50"),
        last_transaction=WHEN, created_at=WHEN,
    )


def _transactions(name="Maria Lopez"):
    base = dict(customer_id="c1", membership_id="04213", customer_name=name, created_at=WHEN)
    return [
        TransactionRecord(
            id="t2", type=TransactionType.REGULAR, amount=Decimal("7.50"), gallons=5,
            customer_balance=Decimal("42.50"), **base,
        ),
        TransactionRecord(
            id="t1", type=TransactionType.FUND, amount=Decimal("50.00"),
            customer_balance=Decimal("50.00"), notes="Initial balance", **base,
        ),
    ]


class TestSanitizeText:

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["=SUM(A1:A10)", "+cmd", "-1+1", "@SUM(A1)", "\t=cmd"])
    def test_formula_prefixes_are_quoted(self, value):
        assert _sanitize_text(value) == f"'{value}"

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["Maria Lopez", "", None])
    def test_safe_values_unchanged(self, value):
        assert _sanitize_text(value) == value


class TestStatementWorkbook:

    @pytest.mark.unit
    def test_generates_valid_xlsx(self):
        content = build_transactions_workbook(_customer(), _transactions())

        ws = load_workbook(io.BytesIO(content)).active
        assert "Maria Lopez" in ws["A1"].value
        assert "#04213" in ws["A1"].value

        header_row = 4
        assert [ws.cell(row=header_row, column=c).value for c in range(1, len(HEADERS) + 1)] == HEADERS

        assert ws.cell(row=5, column=1).value == "3/7/2024 14:05"
        assert ws.cell(row=5, column=5).value == 5
        assert ws.cell(row=5, column=6).value == pytest.approx(-7.5)
        assert ws.cell(row=6, column=6).value == pytest.approx(50.0)
        assert ws.cell(row=6, column=8).value == "Initial balance"

    @pytest.mark.unit
    def test_totals_row(self):
        content = build_transactions_workbook(_customer(), _transactions())

        ws = load_workbook(io.BytesIO(content)).active
        assert ws.cell(row=7, column=1).value == "Totals"
        assert ws.cell(row=7, column=5).value == 5
        assert ws.cell(row=7, column=6).value == pytest.approx(42.5)

    @pytest.mark.unit
    def test_global_history_without_customer(self):
        content = build_transactions_workbook(None, [])

        ws = load_workbook(io.BytesIO(content)).active
        assert ws["A1"].value == "Transaction history"
        assert ws.cell(row=5, column=1).value == "Totals"

    @pytest.mark.unit
    def test_names_are_sanitized(self):
        content = build_transactions_workbook(_customer("=HYPERLINK()"), _transactions("=HYPERLINK()"))

        ws = load_workbook(io.BytesIO(content)).active
        assert ws.cell(row=5, column=3).value == "'=HYPERLINK()"

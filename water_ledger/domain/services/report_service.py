"""
Report Service - formatted Excel statements (openpyxl)

Builds an XLSX transaction statement for one customer, or for the global
history, with a title, a header row, one row per transaction and a totals row.
"""
import io
from decimal import Decimal
from typing import Any, Iterable, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from water_ledger.domain.clock import utc_now
from water_ledger.domain.records import CustomerRecord, TransactionRecord, TransactionType
from water_ledger.domain.services.search_service import format_display_datetime


# ==================== styles ====================

_HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
_HEADER_FONT = Font(name="Arial", bold=True, color="FFFFFF", size=11)
_TITLE_FONT = Font(name="Arial", bold=True, size=14)
_SUBTITLE_FONT = Font(name="Arial", bold=False, size=10, color="666666")
_TOTAL_FONT = Font(name="Arial", bold=True, size=11)
_TOTAL_FILL = PatternFill(start_color="D9E2F3", end_color="D9E2F3", fill_type="solid")
_CURRENCY_FORMAT = '"$"#,##0.00'

_THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

_TEXT_ALIGN = Alignment(horizontal="left", vertical="center", wrap_text=True)
_NUMBER_ALIGN = Alignment(horizontal="right", vertical="center")

HEADERS = ["Date", "Member #", "Customer", "Type", "Gallons", "Amount", "Balance", "Notes"]
# Gallons, Amount, Balance
_NUMERIC_COLUMNS = (5, 6, 7)

_TYPE_LABELS = {
    TransactionType.REGULAR: "Regular water",
    TransactionType.ALKALINE: "Alkaline water",
    TransactionType.FUND: "Funds added",
}


def _auto_fit_columns(ws: Any) -> None:
    for col_cells in ws.columns:
        max_length = 0
        col_letter = get_column_letter(col_cells[0].column)
        for cell in col_cells:
            if cell.value is not None:
                max_length = max(max_length, len(str(cell.value)))
        # min 10, max 40
        ws.column_dimensions[col_letter].width = min(max(max_length + 4, 10), 40)


def _style_row(
    ws: Any,
    row: int,
    col_count: int,
    font: Optional[Font] = None,
    fill: Optional[PatternFill] = None,
) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        if font is not None:
            cell.font = font
        if fill is not None:
            cell.fill = fill
        cell.alignment = _NUMBER_ALIGN if col in _NUMERIC_COLUMNS else _TEXT_ALIGN
        cell.border = _THIN_BORDER


def _write_title(ws: Any, title: str, subtitle: str, start_row: int = 1) -> int:
    """Title and subtitle; returns the first row after a blank spacer"""
    ws.cell(row=start_row, column=1, value=title).font = _TITLE_FONT
    ws.cell(row=start_row + 1, column=1, value=subtitle).font = _SUBTITLE_FONT
    return start_row + 3


def _currency(ws: Any, row: int, column: int, value: Decimal) -> None:
    cell = ws.cell(row=row, column=column, value=float(value))
    cell.number_format = _CURRENCY_FORMAT


# Excel evaluates text starting with these as a formula
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_text(value: Optional[str]) -> Optional[str]:
    """Prefix formula-like text with a quote so Excel shows it verbatim"""
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


def build_transactions_workbook(
    customer: Optional[CustomerRecord],
    transactions: Iterable[TransactionRecord],
) -> bytes:
    """
    Statement workbook for ``customer``, or the global history when None.

    Returns:
        bytes - XLSX file contents
    """
    transactions = list(transactions)

    wb = Workbook()
    ws = wb.active
    ws.title = "Statement"

    if customer is not None:
        title = f"Statement - {_sanitize_text(customer.name)} (#{customer.membership_id})"
        subtitle = (
            f"Current balance: ${customer.balance:.2f} | "
            f"Generated: {format_display_datetime(utc_now())} UTC"
        )
    else:
        title = "Transaction history"
        subtitle = f"Generated: {format_display_datetime(utc_now())} UTC"
    header_row = _write_title(ws, title, subtitle)

    col_count = len(HEADERS)
    for col, header in enumerate(HEADERS, 1):
        ws.cell(row=header_row, column=col, value=header)
    _style_row(ws, header_row, col_count, font=_HEADER_FONT, fill=_HEADER_FILL)

    funds = Decimal("0.00")
    purchases = Decimal("0.00")
    gallons = 0
    for i, transaction in enumerate(transactions):
        row = header_row + 1 + i
        ws.cell(row=row, column=1, value=format_display_datetime(transaction.created_at))
        ws.cell(row=row, column=2, value=transaction.membership_id)
        ws.cell(row=row, column=3, value=_sanitize_text(transaction.customer_name))
        ws.cell(row=row, column=4, value=_TYPE_LABELS[transaction.type])
        ws.cell(row=row, column=5, value=transaction.gallons)
        _currency(ws, row, 6, transaction.signed_amount)
        _currency(ws, row, 7, transaction.customer_balance)
        ws.cell(row=row, column=8, value=_sanitize_text(transaction.notes))
        _style_row(ws, row, col_count)

        if transaction.type is TransactionType.FUND:
            funds += transaction.amount
        else:
            purchases += transaction.amount
            gallons += transaction.gallons or 0

    total_row = header_row + 1 + len(transactions)
    ws.cell(row=total_row, column=1, value="Totals")
    ws.cell(row=total_row, column=3, value=f"Funds ${funds:.2f} / Purchases ${purchases:.2f}")
    ws.cell(row=total_row, column=5, value=gallons)
    _currency(ws, total_row, 6, funds - purchases)
    _style_row(ws, total_row, col_count, font=_TOTAL_FONT, fill=_TOTAL_FILL)

    _auto_fit_columns(ws)

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output.getvalue()

"""
Tests for the shared record types: money rounding and cursors
"""
from datetime import datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from water_ledger.core.exceptions import ValidationException
from water_ledger.domain.clock import MonotonicClock
from water_ledger.domain.records import (
    CustomerRecord,
    Cursor,
    TransactionRecord,
    TransactionType,
    page_from_overfetch,
    to_money,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    "value, expected",
    [("7.5", "7.50"), ("1.005", "1.01"), ("2.004", "2.00"), (3, "3.00"), ("-0.125", "-0.13")],
)
def test_to_money_rounds_half_up(value, expected):
    assert to_money(value) == Decimal(expected)


@pytest.mark.unit
@pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", ""])
def test_to_money_rejects_garbage(value):
    with pytest.raises(ValidationException):
        to_money(value)


@pytest.mark.unit
def test_cursor_token_round_trip():
    cursor = Cursor(sort_key=datetime(2024, 3, 7, 14, 5, 0, 123456), id="abc")
    token = cursor.encode()

    assert "=" not in token
    assert Cursor.decode(token) == cursor


@pytest.mark.unit
@pytest.mark.parametrize("token", ["not-base64!!", "e30", "eyJrIjogIm5vcGUiLCAiaSI6ICJ4In0"])
def test_malformed_cursor(token):
    with pytest.raises(ValidationException):
        Cursor.decode(token)


@pytest.mark.unit
def test_records_are_frozen():
    now = datetime(2024, 1, 1)
    customer = CustomerRecord(
        id="c1", membership_id="00001", name="Ana", balance=Decimal("1"),
        last_transaction=now, created_at=now,
    )
    with pytest.raises(ValidationError):
        customer.balance = Decimal("1000")


@pytest.mark.unit
def test_signed_amount():
    now = datetime(2024, 1, 1)
    base = dict(
        id="t1", customer_id="c1", membership_id="00001", customer_name="Ana",
        amount=Decimal("5"), customer_balance=Decimal("5"), created_at=now,
    )
    assert TransactionRecord(type=TransactionType.FUND, **base).signed_amount == Decimal("5")
    assert TransactionRecord(
        type=TransactionType.REGULAR, gallons=2, **base
    ).signed_amount == Decimal("-5")


@pytest.mark.unit
def test_page_from_overfetch():
    page = page_from_overfetch([1, 2, 3], 2, lambda item: Cursor(sort_key=datetime(2024, 1, item), id=str(item)))
    assert page.items == [1, 2]
    assert page.has_more is True
    assert page.cursor.id == "2"

    empty = page_from_overfetch([], 2, lambda item: None)
    assert empty.items == [] and empty.has_more is False and empty.cursor is None


@pytest.mark.unit
def test_monotonic_clock_never_repeats():
    clock = MonotonicClock()
    stamps = [clock.now() for _ in range(1000)]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


@pytest.mark.unit
def test_monotonic_clock_continues_after_observed_value():
    clock = MonotonicClock()
    future = datetime(2999, 1, 1)
    clock.observe(future)
    assert clock.now() > future

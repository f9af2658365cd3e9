"""
Money columns must be Numeric(10,2), never Float.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import Numeric, inspect

from water_ledger.db.models.customer import Customer
from water_ledger.db.models.customer_transaction import CustomerTransaction
from water_ledger.db.models.water_price import WaterPrice
from water_ledger.domain.records import TransactionType


_EXPECTED_NUMERIC_COLUMNS = [
    (Customer, "balance"),
    (CustomerTransaction, "amount"),
    (CustomerTransaction, "customer_balance"),
    (WaterPrice, "regular_price"),
    (WaterPrice, "alkaline_price"),
]


@pytest.mark.unit
@pytest.mark.parametrize("model_class, column_name", _EXPECTED_NUMERIC_COLUMNS)
def test_financial_column_is_numeric(model_class, column_name):
    col_type = inspect(model_class).columns[column_name].type

    assert isinstance(col_type, Numeric), (
        f"{model_class.__name__}.{column_name} is {type(col_type).__name__}, not Numeric"
    )
    assert col_type.precision == 10
    assert col_type.scale == 2


# ============================================================================
# Cent precision through a real store
# ============================================================================

@pytest.mark.unit
async def test_balance_keeps_cents(sql_store):
    customer = await sql_store.create_customer("Precision Test", Decimal("100.10"))

    reloaded = await sql_store.get_customer(customer.id)
    assert reloaded.balance == Decimal("100.10")


@pytest.mark.unit
async def test_classic_float_drift_avoided(sql_store):
    """0.1 + 0.2 stays exactly 0.30"""
    customer = await sql_store.create_customer("Drift Test", Decimal("0.10"))
    _, updated = await sql_store.append_transaction(
        customer.id, TransactionType.FUND, Decimal("0.20")
    )

    assert updated.balance == Decimal("0.30")


@pytest.mark.unit
async def test_half_cent_rounds_up(sql_store):
    customer = await sql_store.create_customer("Rounding Test", Decimal("10.005"))

    assert customer.balance == Decimal("10.01")

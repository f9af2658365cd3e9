"""
Contract tests for the ledger stores.

Every test here runs against both backends through the parametrized
``store`` fixture (SQLite via SQLAlchemy, and the JSON file store),
except the SQL connection failures at the end.
"""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from water_ledger.core.exceptions import (
    ConflictError,
    CustomerNotFoundError,
    ErrorCode,
    StoreUnavailableError,
    ValidationException,
)
from water_ledger.domain.records import ALL_CUSTOMERS, Cursor, TransactionType
from water_ledger.domain.stores.base import INITIAL_BALANCE_NOTE


async def _walk_transactions(store, customer_id, page_size):
    items, after = [], None
    while True:
        page = await store.list_transactions(customer_id, after, page_size)
        items.extend(page.items)
        if not page.has_more:
            return items
        after = page.cursor


# ============================================================================
# Customers
# ============================================================================


class TestCreateCustomer:

    @pytest.mark.unit
    async def test_zero_balance_creates_no_transaction(self, store):
        customer = await store.create_customer("Ana", Decimal("0"))

        assert customer.balance == Decimal("0.00")
        assert customer.version == 1
        assert customer.last_transaction == customer.created_at
        assert len(customer.membership_id) == 5 and customer.membership_id.isdigit()

        page = await store.list_transactions(customer.id, None, 10)
        assert page.items == []

    @pytest.mark.unit
    async def test_initial_balance_is_logged_as_fund(self, store):
        customer = await store.create_customer("Ana", Decimal("50.00"))

        page = await store.list_transactions(customer.id, None, 10)
        assert len(page.items) == 1
        fund = page.items[0]
        assert fund.type is TransactionType.FUND
        assert fund.amount == Decimal("50.00")
        assert fund.customer_balance == Decimal("50.00")
        assert fund.gallons is None
        assert fund.notes == INITIAL_BALANCE_NOTE
        assert fund.membership_id == customer.membership_id
        assert fund.customer_name == "Ana"
        assert customer.balance == Decimal("50.00")

    @pytest.mark.unit
    @pytest.mark.parametrize("name", ["", "   "])
    async def test_empty_name_rejected(self, store, name):
        with pytest.raises(ValidationException):
            await store.create_customer(name, Decimal("0"))

    @pytest.mark.unit
    async def test_negative_initial_balance_rejected(self, store):
        with pytest.raises(ValidationException):
            await store.create_customer("Ana", Decimal("-1"))

        page = await store.list_customers(None, 10)
        assert page.items == []

    @pytest.mark.unit
    async def test_membership_ids_are_unique(self, store):
        customers = [await store.create_customer(f"C{i}", Decimal("0")) for i in range(30)]
        ids = [c.membership_id for c in customers]
        assert len(set(ids)) == len(ids)
        for membership_id in ids:
            assert await store.membership_id_exists(membership_id)


class TestGetAndUpdateCustomer:

    @pytest.mark.unit
    async def test_unknown_customer(self, store):
        with pytest.raises(CustomerNotFoundError):
            await store.get_customer("missing")

    @pytest.mark.unit
    async def test_rename_keeps_balance_and_history(self, store):
        customer = await store.create_customer("Old Name", Decimal("20"))

        renamed = await store.update_customer_profile(customer.id, "  New Name ")

        assert renamed.name == "New Name"
        assert renamed.balance == customer.balance
        assert renamed.last_transaction == customer.last_transaction
        assert renamed.version == customer.version + 1

        page = await store.list_transactions(customer.id, None, 10)
        assert page.items[0].customer_name == "Old Name"

    @pytest.mark.unit
    async def test_rename_unknown_customer(self, store):
        with pytest.raises(CustomerNotFoundError):
            await store.update_customer_profile("missing", "Name")

    @pytest.mark.unit
    async def test_rename_to_empty_rejected(self, store):
        customer = await store.create_customer("Ana", Decimal("0"))
        with pytest.raises(ValidationException):
            await store.update_customer_profile(customer.id, " ")


# ============================================================================
# Transactions
# ============================================================================


class TestAppendTransaction:

    @pytest.mark.unit
    async def test_fund_and_purchase_move_balance(self, store):
        customer = await store.create_customer("Ana", Decimal("10"))

        fund, after_fund = await store.append_transaction(
            customer.id, TransactionType.FUND, Decimal("5.25")
        )
        assert after_fund.balance == Decimal("15.25")
        assert fund.customer_balance == Decimal("15.25")
        assert after_fund.last_transaction == fund.created_at

        purchase, after_purchase = await store.append_transaction(
            customer.id, TransactionType.ALKALINE, Decimal("4.00"), gallons=2, notes="jug"
        )
        assert purchase.gallons == 2
        assert purchase.notes == "jug"
        assert after_purchase.balance == Decimal("11.25")
        assert purchase.customer_balance == Decimal("11.25")

        stored = await store.get_customer(customer.id)
        assert stored.balance == Decimal("11.25")
        assert stored.version == after_purchase.version

    @pytest.mark.unit
    async def test_store_does_not_enforce_overdraft(self, store):
        customer = await store.create_customer("Ana", Decimal("1"))

        _, updated = await store.append_transaction(
            customer.id, TransactionType.REGULAR, Decimal("3"), gallons=2
        )

        assert updated.balance == Decimal("-2.00")

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "type, amount, gallons",
        [
            (TransactionType.FUND, Decimal("0"), None),
            (TransactionType.FUND, Decimal("-5"), None),
            (TransactionType.FUND, Decimal("5"), 3),
            (TransactionType.REGULAR, Decimal("5"), None),
            (TransactionType.REGULAR, Decimal("5"), 0),
        ],
    )
    async def test_invalid_shapes_write_nothing(self, store, type, amount, gallons):
        customer = await store.create_customer("Ana", Decimal("10"))

        with pytest.raises(ValidationException):
            await store.append_transaction(customer.id, type, amount, gallons=gallons)

        stored = await store.get_customer(customer.id)
        assert stored.balance == Decimal("10.00")
        page = await store.list_transactions(customer.id, None, 10)
        assert len(page.items) == 1

    @pytest.mark.unit
    async def test_non_positive_amount_uses_invalid_amount_code(self, store):
        customer = await store.create_customer("Ana", Decimal("0"))
        with pytest.raises(ValidationException) as exc_info:
            await store.append_transaction(customer.id, TransactionType.FUND, Decimal("0"))
        assert exc_info.value.error_code is ErrorCode.INVALID_AMOUNT

    @pytest.mark.unit
    async def test_unknown_customer(self, store):
        with pytest.raises(CustomerNotFoundError):
            await store.append_transaction("missing", TransactionType.FUND, Decimal("1"))

    @pytest.mark.unit
    async def test_stale_expected_version_conflicts(self, store):
        customer = await store.create_customer("Ana", Decimal("10"))
        await store.append_transaction(customer.id, TransactionType.FUND, Decimal("1"))

        with pytest.raises(ConflictError):
            await store.append_transaction(
                customer.id,
                TransactionType.REGULAR,
                Decimal("1.50"),
                gallons=1,
                expected_version=customer.version,
            )

        stored = await store.get_customer(customer.id)
        assert stored.balance == Decimal("11.00")

    @pytest.mark.unit
    async def test_current_expected_version_succeeds(self, store):
        customer = await store.create_customer("Ana", Decimal("10"))

        _, updated = await store.append_transaction(
            customer.id,
            TransactionType.REGULAR,
            Decimal("1.50"),
            gallons=1,
            expected_version=customer.version,
        )

        assert updated.version == customer.version + 1

    @pytest.mark.unit
    async def test_transactions_are_immutable(self, store):
        customer = await store.create_customer("Ana", Decimal("50"))
        first_page = await store.list_transactions(customer.id, None, 10)
        original = first_page.items[0]

        for _ in range(3):
            await store.append_transaction(customer.id, TransactionType.FUND, Decimal("5"))

        history = await _walk_transactions(store, customer.id, 10)
        reread = next(t for t in history if t.id == original.id)
        assert reread == original
        assert reread.customer_balance == Decimal("50.00")


class TestListing:

    @pytest.mark.unit
    @pytest.mark.parametrize("page_size", [1, 2, 3, 7, 50])
    async def test_pagination_is_complete_without_duplicates(self, store, page_size):
        customer = await store.create_customer("Ana", Decimal("100"))
        for i in range(1, 12):
            await store.append_transaction(customer.id, TransactionType.FUND, Decimal(i))

        walked = await _walk_transactions(store, customer.id, page_size)
        unbounded = (await store.list_transactions(customer.id, None, 1000)).items

        assert [t.id for t in walked] == [t.id for t in unbounded]
        assert len({t.id for t in walked}) == 12
        assert [t.created_at for t in walked] == sorted(
            (t.created_at for t in walked), reverse=True
        )

    @pytest.mark.unit
    async def test_has_more_uses_overfetch(self, store):
        customer = await store.create_customer("Ana", Decimal("0"))
        for _ in range(4):
            await store.append_transaction(customer.id, TransactionType.FUND, Decimal("1"))

        exact = await store.list_transactions(customer.id, None, 4)
        assert len(exact.items) == 4 and exact.has_more is False

        short = await store.list_transactions(customer.id, None, 3)
        assert len(short.items) == 3 and short.has_more is True
        assert short.cursor == Cursor.for_transaction(short.items[-1])

    @pytest.mark.unit
    async def test_all_sentinel_lists_every_customer(self, store):
        ana = await store.create_customer("Ana", Decimal("10"))
        ben = await store.create_customer("Ben", Decimal("20"))
        await store.append_transaction(ana.id, TransactionType.FUND, Decimal("1"))

        everything = (await store.list_transactions(ALL_CUSTOMERS, None, 100)).items

        assert {t.customer_id for t in everything} == {ana.id, ben.id}
        assert len(everything) == 3
        assert everything[0].customer_id == ana.id

    @pytest.mark.unit
    async def test_unknown_customer_lists_empty(self, store):
        page = await store.list_transactions("missing", None, 10)
        assert page.items == [] and page.has_more is False and page.cursor is None

    @pytest.mark.unit
    async def test_customers_most_recently_active_first(self, store):
        ana = await store.create_customer("Ana", Decimal("0"))
        ben = await store.create_customer("Ben", Decimal("0"))
        cleo = await store.create_customer("Cleo", Decimal("0"))
        await store.append_transaction(ana.id, TransactionType.FUND, Decimal("1"))

        first = await store.list_customers(None, 2)
        second = await store.list_customers(first.cursor, 2)

        assert [c.id for c in first.items] == [ana.id, cleo.id]
        assert first.has_more is True
        assert [c.id for c in second.items] == [ben.id]
        assert second.has_more is False


class TestSearch:

    @pytest.mark.unit
    async def test_name_prefix_is_case_sensitive(self, store):
        await store.create_customer("Maria", Decimal("0"))
        await store.create_customer("Mario", Decimal("0"))
        await store.create_customer("Ramon", Decimal("0"))

        results = await store.search_customers("Mari", limit=10)
        assert [c.name for c in results] == ["Maria", "Mario"]
        assert await store.search_customers("mari", limit=10) == []

    @pytest.mark.unit
    async def test_numeric_term_matches_padded_membership_id(self, store):
        customer = await store.create_customer("Ana", Decimal("0"))
        unpadded = customer.membership_id.lstrip("0") or "0"

        results = await store.search_customers(unpadded, limit=10)

        assert [c.id for c in results] == [customer.id]

    @pytest.mark.unit
    async def test_blank_term_returns_nothing(self, store):
        await store.create_customer("Ana", Decimal("0"))
        assert await store.search_customers("  ", limit=10) == []

    @pytest.mark.unit
    async def test_limit_caps_results(self, store):
        for i in range(5):
            await store.create_customer(f"Sam {i}", Decimal("0"))
        assert len(await store.search_customers("Sam", limit=3)) == 3


# ============================================================================
# Prices
# ============================================================================


class TestPrices:

    @pytest.mark.unit
    async def test_defaults_when_never_set(self, store):
        prices = await store.current_prices()
        assert prices.id is None
        assert prices.regular_price == Decimal("1.50")
        assert prices.alkaline_price == Decimal("2.00")
        assert await store.price_history(10) == []

    @pytest.mark.unit
    async def test_latest_snapshot_is_current(self, store):
        first = await store.record_price_change(Decimal("1.75"), Decimal("2.25"))
        second = await store.record_price_change(Decimal("2"), Decimal("2.5"))

        current = await store.current_prices()
        history = await store.price_history(10)

        assert current.id == second.id
        assert current.regular_price == Decimal("2.00")
        assert [p.id for p in history] == [second.id, first.id]
        assert len(await store.price_history(1)) == 1

    @pytest.mark.unit
    async def test_negative_price_rejected(self, store):
        with pytest.raises(ValidationException):
            await store.record_price_change(Decimal("-1"), Decimal("2"))


# ============================================================================
# Database unavailable (SQL backend only)
# ============================================================================


def _connection_lost() -> OperationalError:
    return OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


class TestSqlUnavailable:

    @pytest.mark.unit
    async def test_failed_read_is_store_unavailable(self, sql_store, monkeypatch):
        monkeypatch.setattr(
            sql_store.db, "execute", AsyncMock(side_effect=_connection_lost())
        )

        with pytest.raises(StoreUnavailableError) as exc_info:
            await sql_store.list_customers(None, 10)

        assert exc_info.value.status_code == 503
        assert exc_info.value.error_code == ErrorCode.STORE_UNAVAILABLE
        assert exc_info.value.error_code.value == "ERR_5001"

    @pytest.mark.unit
    async def test_failed_commit_is_store_unavailable(self, sql_store, monkeypatch):
        monkeypatch.setattr(
            sql_store.db, "commit", AsyncMock(side_effect=_connection_lost())
        )

        with pytest.raises(StoreUnavailableError) as exc_info:
            await sql_store.create_customer("Ana", Decimal("5"))

        assert exc_info.value.status_code == 503
        monkeypatch.undo()
        assert (await sql_store.list_customers(None, 10)).items == []

"""
Ledger Service - the store facade used by the API

Reads go through the LedgerCache; every write goes to the store first and
invalidates the affected entity types only after the store committed. Purchase
policy (overdraft check, duplicate guard) lives here, the store stays dumb.
"""
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict

from water_ledger.core.config import settings
from water_ledger.core.exceptions import (
    DuplicateTransactionWarning,
    InsufficientBalanceError,
    ValidationException,
)
from water_ledger.core.logging import get_logger
from water_ledger.domain.clock import utc_now
from water_ledger.domain.records import (
    ALL_CUSTOMERS,
    CustomerRecord,
    Cursor,
    Page,
    PriceSnapshot,
    TransactionRecord,
    TransactionType,
    to_money,
)
from water_ledger.domain.services.cache import (
    CUSTOMERS,
    CUSTOMER_SEARCH,
    PRICES,
    TRANSACTIONS,
    CachedPage,
    LedgerCache,
)
from water_ledger.domain.services.search_service import (
    filter_customers,
    filter_transactions,
)
from water_ledger.domain.stores.base import LedgerStore

logger = get_logger(__name__)

PageFetcher = Callable[[Optional[Cursor], int], Awaitable[Page]]

_CURRENT_PRICES_KEY = "current"


class PurchaseQuote(BaseModel):
    """What a purchase would cost, without writing anything"""

    model_config = ConfigDict(frozen=True)

    customer_id: str
    water_type: TransactionType
    gallons: int
    unit_price: Decimal
    amount: Decimal
    balance: Decimal
    sufficient: bool
    required_funds: Decimal


def _purchase_type(water_type: TransactionType | str) -> TransactionType:
    try:
        value = TransactionType(water_type)
    except ValueError as e:
        raise ValidationException(
            f"Unknown water type: {water_type}", field="water_type"
        ) from e
    if not value.is_purchase:
        raise ValidationException(
            "Use add_funds for fund transactions", field="water_type"
        )
    return value


def _check_gallons(gallons: Optional[int]) -> int:
    if gallons is None or isinstance(gallons, bool) or gallons <= 0:
        raise ValidationException(
            "Purchases must specify a positive number of gallons", field="gallons"
        )
    return gallons


class LedgerService:
    """Cached reads and policy-checked writes over one LedgerStore"""

    def __init__(self, store: LedgerStore, cache: LedgerCache):
        self.store = store
        self.cache = cache

    # ==================== paging ====================

    @staticmethod
    def _check_paging(page: int, page_size: Optional[int]) -> tuple[int, int]:
        page_size = page_size or settings.DEFAULT_PAGE_SIZE
        if page < 1:
            raise ValidationException("Page numbers start at 1", field="page")
        if page_size < 1 or page_size > settings.MAX_PAGE_SIZE:
            raise ValidationException(
                f"page_size must be between 1 and {settings.MAX_PAGE_SIZE}",
                field="page_size",
            )
        return page, page_size

    async def _cached_page(
        self,
        entity: str,
        query_key: str,
        page: int,
        page_size: int,
        fetch: PageFetcher,
        force_refresh: bool = False,
    ) -> CachedPage:
        """
        Page ``page`` of a listing, read through the cache.

        Page N needs the cursor of page N-1; missing predecessors are fetched
        (and cached) walking forward from the nearest cached page, or page 1.
        """
        key = f"{query_key}|{page_size}"
        if force_refresh:
            self.cache.invalidate_key(entity, key)

        cached = self.cache.get(entity, key, page)
        if cached is not None:
            return cached

        start, after = 1, None
        for previous in range(page - 1, 0, -1):
            entry = self.cache.get(entity, key, previous)
            if entry is None:
                continue
            if not entry.has_more:
                return CachedPage(items=(), cursor=None, has_more=False)
            start, after = previous + 1, entry.cursor
            break

        entry = None
        for number in range(start, page + 1):
            result = await fetch(after, page_size)
            entry = self.cache.put(
                entity, key, number, result.items, result.cursor, result.has_more
            )
            if number < page and not result.has_more:
                return CachedPage(items=(), cursor=None, has_more=False)
            after = result.cursor
        return entry

    @staticmethod
    async def _page_after(token: str, page_size: int, fetch: PageFetcher) -> Page:
        """Continue from a cursor a client got with an earlier page; bypasses the cache"""
        return await fetch(Cursor.decode(token), page_size)

    def _after_ledger_write(self) -> None:
        self.cache.invalidate(CUSTOMERS, CUSTOMER_SEARCH, TRANSACTIONS)

    # ==================== customers ====================

    async def create_customer(
        self, name: str, initial_balance: Decimal | int | str = Decimal("0")
    ) -> CustomerRecord:
        customer = await self.store.create_customer(name, to_money(initial_balance))
        self._after_ledger_write()
        return customer

    async def get_customer(self, customer_id: str) -> CustomerRecord:
        return await self.store.get_customer(customer_id)

    async def update_customer_profile(self, customer_id: str, name: str) -> CustomerRecord:
        customer = await self.store.update_customer_profile(customer_id, name)
        self._after_ledger_write()
        return customer

    async def list_customers(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        force_refresh: bool = False,
        query: Optional[str] = None,
        cursor: Optional[str] = None,
    ) -> Page[CustomerRecord]:
        page, page_size = self._check_paging(page, page_size)
        if cursor:
            entry = await self._page_after(cursor, page_size, self.store.list_customers)
        else:
            entry = await self._cached_page(
                CUSTOMERS, ALL_CUSTOMERS, page, page_size,
                self.store.list_customers, force_refresh,
            )
        return Page(
            items=filter_customers(entry.items, query),
            has_more=entry.has_more,
            cursor=entry.cursor,
        )

    async def search_customers(
        self, term: str, force_refresh: bool = False
    ) -> list[CustomerRecord]:
        term = (term or "").strip()
        if not term:
            return []
        if force_refresh:
            self.cache.invalidate_key(CUSTOMER_SEARCH, term)

        cached = self.cache.get(CUSTOMER_SEARCH, term, 1)
        if cached is not None:
            return list(cached.items)

        results = await self.store.search_customers(term, settings.SEARCH_RESULT_LIMIT)
        self.cache.put(CUSTOMER_SEARCH, term, 1, results, None, False)
        return results

    # ==================== transactions ====================

    async def list_transactions(
        self,
        customer_id: str = ALL_CUSTOMERS,
        page: int = 1,
        page_size: Optional[int] = None,
        force_refresh: bool = False,
        query: Optional[str] = None,
        cursor: Optional[str] = None,
    ) -> Page[TransactionRecord]:
        page, page_size = self._check_paging(page, page_size)

        async def fetch(after: Optional[Cursor], limit: int) -> Page[TransactionRecord]:
            return await self.store.list_transactions(customer_id, after, limit)

        if cursor:
            entry = await self._page_after(cursor, page_size, fetch)
        else:
            entry = await self._cached_page(
                TRANSACTIONS, customer_id, page, page_size, fetch, force_refresh
            )
        return Page(
            items=filter_transactions(entry.items, query),
            has_more=entry.has_more,
            cursor=entry.cursor,
        )

    async def transaction_log(self, customer_id: str) -> list[TransactionRecord]:
        """Every transaction of a customer straight from the store, newest first"""
        await self.store.get_customer(customer_id)
        log: list[TransactionRecord] = []
        after = None
        while True:
            result = await self.store.list_transactions(
                customer_id, after, settings.MAX_PAGE_SIZE
            )
            log.extend(result.items)
            if not result.has_more:
                return log
            after = result.cursor

    async def all_customers(self) -> list[CustomerRecord]:
        """Every customer straight from the store, most recently active first"""
        customers: list[CustomerRecord] = []
        after = None
        while True:
            result = await self.store.list_customers(after, settings.MAX_PAGE_SIZE)
            customers.extend(result.items)
            if not result.has_more:
                return customers
            after = result.cursor

    async def add_funds(
        self,
        customer_id: str,
        amount: Decimal | int | str,
        notes: Optional[str] = None,
    ) -> tuple[TransactionRecord, CustomerRecord]:
        """Deposit money. Funds are never balance-checked."""
        transaction, customer = await self.store.append_transaction(
            customer_id, TransactionType.FUND, to_money(amount), None, notes
        )
        self._after_ledger_write()
        return transaction, customer

    async def _purchase_amount(
        self, water_type: TransactionType, gallons: int
    ) -> tuple[Decimal, Decimal]:
        prices = await self.current_prices()
        unit_price = prices.price_for(water_type)
        return unit_price, to_money(unit_price * gallons)

    async def quote_purchase(
        self,
        customer_id: str,
        water_type: TransactionType | str,
        gallons: int,
    ) -> PurchaseQuote:
        water_type = _purchase_type(water_type)
        gallons = _check_gallons(gallons)
        customer = await self.store.get_customer(customer_id)
        unit_price, amount = await self._purchase_amount(water_type, gallons)
        required = amount - customer.balance
        return PurchaseQuote(
            customer_id=customer.id,
            water_type=water_type,
            gallons=gallons,
            unit_price=unit_price,
            amount=amount,
            balance=customer.balance,
            sufficient=required <= 0,
            required_funds=max(required, Decimal("0.00")),
        )

    async def _check_duplicate(
        self,
        customer: CustomerRecord,
        water_type: TransactionType,
        amount: Decimal,
    ) -> None:
        latest = await self.store.list_transactions(customer.id, None, 1)
        if not latest.items:
            return

        previous = latest.items[0]
        elapsed = (utc_now() - previous.created_at).total_seconds()
        if (
            elapsed < settings.DUPLICATE_WINDOW_SECONDS
            and previous.type is water_type
            and previous.amount == amount
        ):
            logger.info(
                "Possible duplicate purchase",
                extra_data={
                    "customer_id": customer.id,
                    "previous_transaction_id": previous.id,
                    "seconds_since_previous": elapsed,
                }
            )
            raise DuplicateTransactionWarning(customer.id, previous.id, elapsed)

    async def record_purchase(
        self,
        customer_id: str,
        water_type: TransactionType | str,
        gallons: int,
        amount: Decimal | int | str | None = None,
        notes: Optional[str] = None,
        confirm_duplicate: bool = False,
    ) -> tuple[TransactionRecord, CustomerRecord]:
        """
        Record a water purchase.

        ``amount`` defaults to gallons times the current price; passing it
        overrides the computed total.

        Raises:
            InsufficientBalanceError: amount exceeds the balance (shortfall attached)
            DuplicateTransactionWarning: same type and amount as the latest
                transaction within the duplicate window, unless confirmed
            ConflictError: the customer changed between the checks and the write
        """
        water_type = _purchase_type(water_type)
        gallons = _check_gallons(gallons)
        customer = await self.store.get_customer(customer_id)

        if amount is None:
            _, amount = await self._purchase_amount(water_type, gallons)
        else:
            amount = to_money(amount)

        if amount - customer.balance > 0:
            raise InsufficientBalanceError(customer.id, customer.balance, amount)

        if not confirm_duplicate:
            await self._check_duplicate(customer, water_type, amount)

        transaction, updated = await self.store.append_transaction(
            customer.id,
            water_type,
            amount,
            gallons,
            notes,
            expected_version=customer.version,
        )
        self._after_ledger_write()
        return transaction, updated

    # ==================== prices ====================

    async def current_prices(self, force_refresh: bool = False) -> PriceSnapshot:
        if force_refresh:
            self.cache.invalidate_key(PRICES, _CURRENT_PRICES_KEY)

        cached = self.cache.get(PRICES, _CURRENT_PRICES_KEY, 1)
        if cached is not None and cached.items:
            return cached.items[0]

        snapshot = await self.store.current_prices()
        self.cache.put(PRICES, _CURRENT_PRICES_KEY, 1, [snapshot], None, False)
        return snapshot

    async def price_for(self, water_type: TransactionType | str) -> Decimal:
        prices = await self.current_prices()
        return prices.price_for(_purchase_type(water_type))

    async def price_history(self, limit: Optional[int] = None) -> list[PriceSnapshot]:
        limit = min(limit or settings.PRICE_HISTORY_LIMIT, settings.PRICE_HISTORY_LIMIT)
        if limit < 1:
            raise ValidationException("limit must be positive", field="limit")
        return await self.store.price_history(limit)

    async def record_price_change(
        self,
        regular_price: Decimal | int | str,
        alkaline_price: Decimal | int | str,
    ) -> PriceSnapshot:
        snapshot = await self.store.record_price_change(
            to_money(regular_price), to_money(alkaline_price)
        )
        self.cache.invalidate(PRICES)
        return snapshot

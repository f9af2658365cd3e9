"""
Ledger Store interface.

A store persists customers, their transaction log and the price history. It is
deliberately dumb: it validates input shape, keeps ``balance`` in step with the
log inside one atomic write, and trusts its caller for business policy
(overdraft checks, duplicate detection).
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from water_ledger.core.config import settings
from water_ledger.core.exceptions import ErrorCode, ValidationException
from water_ledger.domain.records import (
    CustomerRecord,
    Cursor,
    LedgerSnapshot,
    Page,
    PriceSnapshot,
    TransactionRecord,
    TransactionType,
    to_money,
)

INITIAL_BALANCE_NOTE = "Initial balance"


class LedgerStore(ABC):
    """Persistence contract shared by the SQL and JSON-file backends"""

    backend_name: str = "abstract"

    # ==================== customers ====================

    @abstractmethod
    async def membership_id_exists(self, membership_id: str) -> bool:
        """Exact-match existence check used by the id generator"""

    @abstractmethod
    async def create_customer(self, name: str, initial_balance: Decimal) -> CustomerRecord:
        """Create a customer; a positive starting balance is logged as a fund entry"""

    @abstractmethod
    async def get_customer(self, customer_id: str) -> CustomerRecord:
        """Raises CustomerNotFoundError for unknown ids"""

    @abstractmethod
    async def update_customer_profile(self, customer_id: str, name: str) -> CustomerRecord:
        """Rename a customer. Balance and history are untouched."""

    @abstractmethod
    async def list_customers(
        self, after: Optional[Cursor], limit: int
    ) -> Page[CustomerRecord]:
        """Most recently active first"""

    @abstractmethod
    async def search_customers(self, term: str, limit: int) -> list[CustomerRecord]:
        """Membership id exact match or name starts-with range query"""

    # ==================== transactions ====================

    @abstractmethod
    async def append_transaction(
        self,
        customer_id: str,
        type: TransactionType,
        amount: Decimal,
        gallons: Optional[int] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> tuple[TransactionRecord, CustomerRecord]:
        """Append one entry and move the customer's balance, atomically"""

    @abstractmethod
    async def list_transactions(
        self, customer_id: str, after: Optional[Cursor], limit: int
    ) -> Page[TransactionRecord]:
        """Newest first; ``customer_id == "all"`` lists every customer"""

    # ==================== prices ====================

    @abstractmethod
    async def current_prices(self) -> PriceSnapshot:
        """Latest price snapshot, or the configured defaults"""

    @abstractmethod
    async def price_history(self, limit: int) -> list[PriceSnapshot]:
        """Newest first"""

    @abstractmethod
    async def record_price_change(
        self, regular_price: Decimal, alkaline_price: Decimal
    ) -> PriceSnapshot:
        """Append a snapshot; it becomes current immediately"""

    # ==================== backup ====================

    @abstractmethod
    async def export_records(self) -> LedgerSnapshot:
        """Every record, for backup"""

    @abstractmethod
    async def import_records(self, snapshot: LedgerSnapshot) -> None:
        """Upsert every record of an already validated snapshot, atomically"""


# ==================== shared input checks ====================


def clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationException("Customer name must not be empty", field="name")
    if len(cleaned) > 200:
        raise ValidationException("Customer name is too long", field="name")
    return cleaned


def check_initial_balance(initial_balance: Decimal) -> Decimal:
    value = to_money(initial_balance)
    if value < 0:
        raise ValidationException(
            "Initial balance must not be negative", field="initial_balance"
        )
    return value


def check_transaction_shape(
    type: TransactionType,
    amount: Decimal,
    gallons: Optional[int],
) -> Decimal:
    """Validate an entry before it is written; returns the amount in cents"""
    value = to_money(amount)
    if value <= 0:
        raise ValidationException(
            "Amount must be greater than zero",
            field="amount",
            error_code=ErrorCode.INVALID_AMOUNT,
        )
    if type.is_purchase:
        if gallons is None or gallons <= 0:
            raise ValidationException(
                "Purchases must specify a positive number of gallons", field="gallons"
            )
    elif gallons is not None:
        raise ValidationException("Fund transactions carry no gallons", field="gallons")
    return value


def check_prices(regular_price: Decimal, alkaline_price: Decimal) -> tuple[Decimal, Decimal]:
    regular = to_money(regular_price)
    alkaline = to_money(alkaline_price)
    if regular < 0 or alkaline < 0:
        raise ValidationException("Prices must not be negative", field="price")
    return regular, alkaline


def check_cents(value: Decimal, field: str) -> Decimal:
    """Money that is already whole cents; finer values are rejected, not rounded"""
    cents = to_money(value)
    if cents != value:
        raise ValidationException(
            f"{field} must be a whole number of cents: {value}",
            field=field,
            error_code=ErrorCode.INVALID_AMOUNT,
        )
    return cents


def clean_notes(notes: Optional[str]) -> Optional[str]:
    if notes is None:
        return None
    cleaned = notes.strip()
    return cleaned[:500] or None


def apply_to_balance(balance: Decimal, type: TransactionType, amount: Decimal) -> Decimal:
    """Balance after applying one entry; funds add, purchases subtract"""
    if type is TransactionType.FUND:
        return balance + amount
    return balance - amount


def membership_lookup_key(term: str) -> Optional[str]:
    """Zero-padded membership id for an all-digit search term, else None"""
    width = settings.MEMBERSHIP_ID_WIDTH
    if term.isascii() and term.isdigit() and len(term) <= width:
        return term.zfill(width)
    return None


def normalize_membership_id(membership_id: str) -> str:
    """Stored form of a membership id: ASCII digits zero-padded to the configured width"""
    key = membership_lookup_key(membership_id or "")
    if key is None:
        raise ValidationException(
            f"Invalid membership id: {membership_id}", field="membership_id"
        )
    return key


def default_prices(updated_at) -> PriceSnapshot:
    return PriceSnapshot(
        id=None,
        regular_price=to_money(settings.DEFAULT_REGULAR_PRICE),
        alkaline_price=to_money(settings.DEFAULT_ALKALINE_PRICE),
        updated_at=updated_at,
    )


# Upper bound of the starts-with range (highest BMP private-use code point)
PREFIX_RANGE_END = "\uf8ff"

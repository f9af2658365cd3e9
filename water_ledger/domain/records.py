"""
Store-agnostic ledger records.

Both store implementations return these frozen models, so a record handed out
by a store (or kept in the cache) can never be mutated by a caller.
"""
import base64
import binascii
import enum
import json
import uuid
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from water_ledger.core.exceptions import ValidationException
from water_ledger.domain.clock import as_naive_utc, isoformat_utc

CENT = Decimal("0.01")

# Sentinel customer id meaning "every customer's transactions"
ALL_CUSTOMERS = "all"


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize a money amount to cents (half-up)"""
    try:
        amount = Decimal(str(value))
        if amount.is_finite():
            return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as e:
        raise ValidationException(f"Invalid amount: {value!r}", field="amount") from e
    raise ValidationException(f"Invalid amount: {value!r}", field="amount")


class TransactionType(str, enum.Enum):
    REGULAR = "regular"
    ALKALINE = "alkaline"
    FUND = "fund"

    @property
    def is_purchase(self) -> bool:
        return self is not TransactionType.FUND


class CustomerRecord(BaseModel):
    """A customer and their denormalized balance"""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    membership_id: str
    name: str
    balance: Decimal
    last_transaction: datetime
    created_at: datetime
    version: int = 1

    @field_validator("last_transaction", "created_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_naive_utc(v)

    @field_serializer("last_transaction", "created_at", when_used="json")
    def serialize_timestamps(self, v: datetime) -> str:
        return isoformat_utc(v)


class TransactionRecord(BaseModel):
    """One immutable entry of the transaction log"""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    customer_id: str
    membership_id: str
    customer_name: str
    type: TransactionType
    amount: Decimal
    gallons: Optional[int] = None
    customer_balance: Decimal
    notes: Optional[str] = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_naive_utc(v)

    @field_serializer("created_at", when_used="json")
    def serialize_timestamps(self, v: datetime) -> str:
        return isoformat_utc(v)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type is TransactionType.FUND else -self.amount


class PriceSnapshot(BaseModel):
    """Per-gallon prices in effect from ``updated_at`` on"""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: Optional[str] = None
    regular_price: Decimal
    alkaline_price: Decimal
    updated_at: datetime

    @field_validator("updated_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_naive_utc(v)

    @field_serializer("updated_at", when_used="json")
    def serialize_timestamps(self, v: datetime) -> str:
        return isoformat_utc(v)

    def price_for(self, water_type: TransactionType) -> Decimal:
        if water_type is TransactionType.REGULAR:
            return self.regular_price
        if water_type is TransactionType.ALKALINE:
            return self.alkaline_price
        raise ValidationException("Fund transactions have no per-gallon price", field="type")


class Cursor(BaseModel):
    """Keyset position: sort timestamp and id of the last item of a page"""

    model_config = ConfigDict(frozen=True)

    sort_key: datetime
    id: str

    @field_validator("sort_key")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_naive_utc(v)

    @field_serializer("sort_key", when_used="json")
    def serialize_timestamps(self, v: datetime) -> str:
        return isoformat_utc(v)

    def encode(self) -> str:
        raw = json.dumps({"k": self.sort_key.isoformat(), "i": self.id})
        return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")

    @classmethod
    def decode(cls, token: str) -> "Cursor":
        padded = token + "=" * (-len(token) % 4)
        try:
            payload = json.loads(base64.urlsafe_b64decode(padded.encode()))
            return cls(sort_key=datetime.fromisoformat(payload["k"]), id=payload["i"])
        except (binascii.Error, ValueError, KeyError, TypeError) as e:
            raise ValidationException("Malformed cursor", field="cursor") from e

    @classmethod
    def for_customer(cls, customer: CustomerRecord) -> "Cursor":
        return cls(sort_key=customer.last_transaction, id=customer.id)

    @classmethod
    def for_transaction(cls, transaction: TransactionRecord) -> "Cursor":
        return cls(sort_key=transaction.created_at, id=transaction.id)


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of a keyset-paginated listing"""

    model_config = ConfigDict(frozen=True)

    items: list[T] = Field(default_factory=list)
    has_more: bool = False
    cursor: Optional[Cursor] = None


class LedgerSnapshot(BaseModel):
    """Whole-ledger backup: every customer, transaction and price change"""

    version: str = "1.0"
    exported_at: Optional[datetime] = None
    customers: list[CustomerRecord] = Field(default_factory=list)
    transactions: list[TransactionRecord] = Field(default_factory=list)
    price_history: list[PriceSnapshot] = Field(default_factory=list)

    @field_validator("exported_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(v) if v is not None else None

    @field_serializer("exported_at", when_used="json")
    def serialize_timestamps(self, v: Optional[datetime]) -> Optional[str]:
        return isoformat_utc(v) if v is not None else None


def page_from_overfetch(rows: list, limit: int, cursor_for) -> Page:
    """Build a page from ``limit + 1`` fetched rows.

    The extra row only signals that another page exists; it is trimmed.
    """
    has_more = len(rows) > limit
    items = rows[:limit]
    cursor = cursor_for(items[-1]) if items else None
    return Page(items=items, has_more=has_more, cursor=cursor)


def new_record_id() -> str:
    """Opaque store-assigned id"""
    return uuid.uuid4().hex

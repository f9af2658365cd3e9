"""
Request/response models shared by the ledger routes
"""
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from water_ledger.domain.records import (
    CustomerRecord,
    Page,
    TransactionRecord,
    TransactionType,
)

T = TypeVar("T")


class CustomerCreateRequest(BaseModel):
    name: str = Field(..., max_length=200)
    initial_balance: Decimal = Decimal("0")


class CustomerUpdateRequest(BaseModel):
    name: str = Field(..., max_length=200)


class FundRequest(BaseModel):
    amount: Decimal
    notes: Optional[str] = Field(None, max_length=500)


class PurchaseRequest(BaseModel):
    water_type: TransactionType
    gallons: int
    amount: Optional[Decimal] = None
    notes: Optional[str] = Field(None, max_length=500)
    confirm_duplicate: bool = False


class PriceChangeRequest(BaseModel):
    regular_price: Decimal
    alkaline_price: Decimal


class TransactionResult(BaseModel):
    """A committed transaction and the customer state it produced"""
    transaction: TransactionRecord
    customer: CustomerRecord


class PageResponse(BaseModel, Generic[T]):
    items: List[T]
    page: int
    page_size: int
    has_more: bool
    cursor: Optional[str] = None

    @classmethod
    def from_page(cls, result: Page, page: int, page_size: int) -> "PageResponse":
        return cls(
            items=list(result.items),
            page=page,
            page_size=page_size,
            has_more=result.has_more,
            cursor=result.cursor.encode() if result.cursor else None,
        )

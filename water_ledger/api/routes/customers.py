"""
Customer API Routes
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from water_ledger.api.dependencies.ledger import (
    get_ledger_service,
    get_reconciliation_service,
)
from water_ledger.api.routes.schemas import (
    CustomerCreateRequest,
    CustomerUpdateRequest,
    FundRequest,
    PageResponse,
    PurchaseRequest,
    TransactionResult,
)
from water_ledger.core.config import settings
from water_ledger.domain.records import CustomerRecord, TransactionRecord, TransactionType
from water_ledger.domain.services.ledger_service import LedgerService, PurchaseQuote
from water_ledger.domain.services.reconciliation_service import (
    ReconciliationReport,
    ReconciliationService,
)
from water_ledger.domain.services.report_service import build_transactions_workbook

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.post(
    "",
    response_model=CustomerRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Create a customer",
    description=(
        "Assigns a membership id. A positive initial balance is recorded as a "
        "fund transaction in the same write."
    ),
)
async def create_customer(
    body: CustomerCreateRequest,
    service: LedgerService = Depends(get_ledger_service),
):
    return await service.create_customer(body.name, body.initial_balance)


@router.get(
    "",
    response_model=PageResponse[CustomerRecord],
    summary="List customers",
    description=(
        "Most recently active first. `q` filters the returned page. Passing the "
        "`cursor` of a previous response continues right after it."
    ),
)
async def list_customers(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    force_refresh: bool = False,
    q: Optional[str] = None,
    cursor: Optional[str] = Query(None, max_length=512),
    service: LedgerService = Depends(get_ledger_service),
):
    result = await service.list_customers(page, page_size, force_refresh, q, cursor)
    return PageResponse.from_page(result, page, page_size)


@router.get(
    "/search",
    response_model=List[CustomerRecord],
    summary="Search customers",
    description="Exact membership id match, or name starts-with (case-sensitive).",
)
async def search_customers(
    term: str = Query(..., max_length=200),
    force_refresh: bool = False,
    service: LedgerService = Depends(get_ledger_service),
):
    return await service.search_customers(term, force_refresh)


@router.get("/{customer_id}", response_model=CustomerRecord, summary="Get a customer")
async def get_customer(
    customer_id: str,
    service: LedgerService = Depends(get_ledger_service),
):
    return await service.get_customer(customer_id)


@router.patch(
    "/{customer_id}",
    response_model=CustomerRecord,
    summary="Rename a customer",
    description="Past transactions keep the name they were recorded with.",
)
async def update_customer(
    customer_id: str,
    body: CustomerUpdateRequest,
    service: LedgerService = Depends(get_ledger_service),
):
    return await service.update_customer_profile(customer_id, body.name)


@router.get(
    "/{customer_id}/transactions",
    response_model=PageResponse[TransactionRecord],
    summary="Customer transaction history",
)
async def list_customer_transactions(
    customer_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    force_refresh: bool = False,
    q: Optional[str] = None,
    cursor: Optional[str] = Query(None, max_length=512),
    service: LedgerService = Depends(get_ledger_service),
):
    await service.get_customer(customer_id)
    result = await service.list_transactions(
        customer_id, page, page_size, force_refresh, q, cursor
    )
    return PageResponse.from_page(result, page, page_size)


@router.get(
    "/{customer_id}/statement.xlsx",
    summary="Customer statement (Excel)",
    response_class=Response,
)
async def customer_statement(
    customer_id: str,
    service: LedgerService = Depends(get_ledger_service),
):
    customer = await service.get_customer(customer_id)
    transactions = await service.transaction_log(customer_id)
    content = build_transactions_workbook(customer, transactions)
    filename = f"statement_{customer.membership_id}.xlsx"
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/{customer_id}/reconciliation",
    response_model=ReconciliationReport,
    summary="Recompute the balance from the transaction log",
)
async def reconcile_customer(
    customer_id: str,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
):
    return await reconciliation.reconcile_customer(customer_id)


@router.post(
    "/{customer_id}/funds",
    response_model=TransactionResult,
    status_code=status.HTTP_201_CREATED,
    summary="Add funds",
)
async def add_funds(
    customer_id: str,
    body: FundRequest,
    service: LedgerService = Depends(get_ledger_service),
):
    transaction, customer = await service.add_funds(customer_id, body.amount, body.notes)
    return TransactionResult(transaction=transaction, customer=customer)


@router.post(
    "/{customer_id}/purchases",
    response_model=TransactionResult,
    status_code=status.HTTP_201_CREATED,
    summary="Record a water purchase",
    description=(
        "Rejected with 400 when the balance is short (details.shortfall) and "
        "with 409 when it repeats the latest transaction within the duplicate "
        "window; resend with `confirm_duplicate=true` to record it anyway."
    ),
)
async def record_purchase(
    customer_id: str,
    body: PurchaseRequest,
    service: LedgerService = Depends(get_ledger_service),
):
    transaction, customer = await service.record_purchase(
        customer_id,
        body.water_type,
        body.gallons,
        amount=body.amount,
        notes=body.notes,
        confirm_duplicate=body.confirm_duplicate,
    )
    return TransactionResult(transaction=transaction, customer=customer)


@router.get(
    "/{customer_id}/purchases/quote",
    response_model=PurchaseQuote,
    summary="Price a purchase without recording it",
)
async def quote_purchase(
    customer_id: str,
    water_type: TransactionType,
    gallons: int = Query(..., ge=1),
    service: LedgerService = Depends(get_ledger_service),
):
    return await service.quote_purchase(customer_id, water_type, gallons)

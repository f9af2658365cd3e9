"""
Transaction History API Routes
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from water_ledger.api.dependencies.ledger import get_ledger_service
from water_ledger.api.routes.schemas import PageResponse
from water_ledger.core.config import settings
from water_ledger.domain.records import ALL_CUSTOMERS, TransactionRecord
from water_ledger.domain.services.ledger_service import LedgerService

router = APIRouter()


@router.get(
    "",
    response_model=PageResponse[TransactionRecord],
    summary="Global transaction history",
    description=(
        "Every customer's transactions, newest first. `q` filters the returned "
        "page; `cursor` continues after a previous response."
    ),
)
async def list_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    force_refresh: bool = False,
    q: Optional[str] = None,
    cursor: Optional[str] = Query(None, max_length=512),
    service: LedgerService = Depends(get_ledger_service),
):
    result = await service.list_transactions(
        ALL_CUSTOMERS, page, page_size, force_refresh, q, cursor
    )
    return PageResponse.from_page(result, page, page_size)

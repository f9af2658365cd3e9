"""
Price Settings API Routes
"""
from typing import List

from fastapi import APIRouter, Depends, Query, status

from water_ledger.api.dependencies.ledger import get_ledger_service
from water_ledger.api.routes.schemas import PriceChangeRequest
from water_ledger.core.config import settings
from water_ledger.domain.records import PriceSnapshot
from water_ledger.domain.services.ledger_service import LedgerService

router = APIRouter()


@router.get("/prices", response_model=PriceSnapshot, summary="Current per-gallon prices")
async def current_prices(
    force_refresh: bool = False,
    service: LedgerService = Depends(get_ledger_service),
):
    return await service.current_prices(force_refresh)


@router.get(
    "/prices/history",
    response_model=List[PriceSnapshot],
    summary="Price change history",
    description="Newest first.",
)
async def price_history(
    limit: int = Query(settings.PRICE_HISTORY_LIMIT, ge=1, le=settings.PRICE_HISTORY_LIMIT),
    service: LedgerService = Depends(get_ledger_service),
):
    return await service.price_history(limit)


@router.post(
    "/prices",
    response_model=PriceSnapshot,
    status_code=status.HTTP_201_CREATED,
    summary="Change prices",
    description="Appends a snapshot that becomes current immediately.",
)
async def record_price_change(
    body: PriceChangeRequest,
    service: LedgerService = Depends(get_ledger_service),
):
    return await service.record_price_change(body.regular_price, body.alkaline_price)

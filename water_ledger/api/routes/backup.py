"""
Backup API Routes
"""
from typing import Any

from fastapi import APIRouter, Body, Depends

from water_ledger.api.dependencies.ledger import get_backup_service
from water_ledger.domain.services.backup_service import BackupService

router = APIRouter()


@router.get(
    "/export",
    summary="Export the whole ledger",
    description="Customers, transactions and price settings as one JSON document.",
)
async def export_snapshot(
    service: BackupService = Depends(get_backup_service),
) -> dict[str, Any]:
    return await service.export_snapshot()


@router.post(
    "/import",
    summary="Import a ledger backup",
    description=(
        "Upserts every record by id after re-validating it. Imported balances "
        "are trusted as-is. All cached pages are dropped."
    ),
)
async def import_snapshot(
    payload: Any = Body(...),
    service: BackupService = Depends(get_backup_service),
) -> dict[str, Any]:
    imported = await service.import_snapshot(payload)
    return {"status": "ok", "imported": imported}

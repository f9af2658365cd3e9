"""
API Routes
"""
from fastapi import APIRouter

from water_ledger.api.routes.backup import router as backup_router
from water_ledger.api.routes.customers import router as customers_router
from water_ledger.api.routes.settings import router as settings_router
from water_ledger.api.routes.transactions import router as transactions_router

router = APIRouter()

router.include_router(customers_router, prefix="/customers", tags=["customers"])
router.include_router(transactions_router, prefix="/transactions", tags=["transactions"])
router.include_router(settings_router, prefix="/settings", tags=["settings"])
router.include_router(backup_router, prefix="/backup", tags=["backup"])

"""
Domain Services
"""
from water_ledger.domain.services.backup_service import BackupService
from water_ledger.domain.services.cache import LedgerCache
from water_ledger.domain.services.ledger_service import LedgerService, PurchaseQuote
from water_ledger.domain.services.reconciliation_service import (
    ReconciliationReport,
    ReconciliationService,
)

__all__ = [
    "BackupService",
    "LedgerCache",
    "LedgerService",
    "PurchaseQuote",
    "ReconciliationReport",
    "ReconciliationService",
]

"""
FastAPI dependencies wiring the ledger services to one request

Usage:
    @router.get("/customers")
    async def list_customers(
        service: LedgerService = Depends(get_ledger_service),
    ):
        ...

The cache, the clock and (for the file backend) the store itself live on
``app.state`` for the life of the application; the SQL store is built per
request around the request's session.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, Request

from water_ledger.core.config import settings
from water_ledger.core.logging import get_logger
from water_ledger.db.database import get_db
from water_ledger.domain.clock import MonotonicClock
from water_ledger.domain.services.backup_service import BackupService
from water_ledger.domain.services.cache import LedgerCache
from water_ledger.domain.services.ledger_service import LedgerService
from water_ledger.domain.services.reconciliation_service import ReconciliationService
from water_ledger.domain.stores.base import LedgerStore
from water_ledger.domain.stores.file_store import FileLedgerStore
from water_ledger.domain.stores.sql_store import SqlLedgerStore

logger = get_logger(__name__)


def init_ledger_state(app: FastAPI, backend: str | None = None) -> None:
    """Attach a fresh cache, clock and (file backend) store to ``app.state``"""
    backend = backend or settings.LEDGER_BACKEND
    app.state.ledger_backend = backend
    app.state.ledger_cache = LedgerCache()
    app.state.ledger_clock = MonotonicClock()
    app.state.file_store = None
    if backend == "file":
        app.state.file_store = FileLedgerStore(
            settings.DATA_FILE, clock=app.state.ledger_clock
        )
    logger.info("Ledger state initialized", extra_data={"backend": backend})


def get_ledger_cache(request: Request) -> LedgerCache:
    return request.app.state.ledger_cache


async def get_ledger_store(request: Request) -> AsyncGenerator[LedgerStore, None]:
    """The file store from app state, or a SQL store around a request-scoped session.

    The session is only opened for the SQL backend; ``get_db`` overrides (tests)
    are honoured.
    """
    state = request.app.state
    if state.ledger_backend == "file":
        yield state.file_store
        return

    session_provider = request.app.dependency_overrides.get(get_db, get_db)
    async with asynccontextmanager(session_provider)() as db:
        yield SqlLedgerStore(db, clock=state.ledger_clock)


async def get_ledger_service(
    store: LedgerStore = Depends(get_ledger_store),
    cache: LedgerCache = Depends(get_ledger_cache),
) -> LedgerService:
    return LedgerService(store, cache)


async def get_backup_service(
    store: LedgerStore = Depends(get_ledger_store),
    cache: LedgerCache = Depends(get_ledger_cache),
) -> BackupService:
    return BackupService(store, cache)


async def get_reconciliation_service(
    service: LedgerService = Depends(get_ledger_service),
) -> ReconciliationService:
    return ReconciliationService(service)

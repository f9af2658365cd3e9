"""
Water Ledger - Main FastAPI Application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from water_ledger import __version__
from water_ledger.core.config import settings
from water_ledger.core.logging import setup_logging, get_logger
from water_ledger.core.middleware import setup_middleware, setup_exception_handlers
from water_ledger.api.dependencies.ledger import init_ledger_state
from water_ledger.api.routes import router as api_router
from water_ledger.db.database import engine, Base

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {"name": "customers", "description": "Customers, their balances, purchases and funds."},
    {"name": "transactions", "description": "Global transaction history."},
    {"name": "settings", "description": "Per-gallon water prices and their history."},
    {"name": "backup", "description": "Whole-ledger export and import."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version=__version__,
    description="Prepaid water-purchase ledger: customers, balances and an append-only transaction log.",
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:8081",
        "http://127.0.0.1:8081",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID"],
    )

app.include_router(api_router, prefix="/api")

# Cache, clock and file store live for the life of the app, never across restarts
init_ledger_state(app)


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info(
        "Starting application",
        extra_data={"app_name": settings.APP_NAME, "backend": settings.LEDGER_BACKEND}
    )
    if settings.LEDGER_BACKEND == "sql":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get("/health", tags=["health"], summary="Liveness check")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "backend": settings.LEDGER_BACKEND}

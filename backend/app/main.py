import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import create_all_tables
from app.middleware.exceptions import register_exception_handlers
from app.middleware.security import (
    SecurityHeadersMiddleware,
    HTTPSRedirectMiddleware,
)
from app.routers import health, stock
from app.tenancy import TheaterContextFilter

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [theater=%(theater_id)s] %(message)s"


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(TheaterContextFilter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger = logging.getLogger("canteen_stock")
    if settings.auto_create_tables:
        await create_all_tables()
        logger.info("Database tables created")
    logger.info("Canteen stock service started (%s)", settings.environment)
    yield
    logger.info("Canteen stock service stopped")


app = FastAPI(
    title="Canteen Stock",
    description="Theater canteen stock ledger and monthly balance reports",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (outermost first) ─────────────────────────────
# Security headers (first - applies to all responses)
app.add_middleware(SecurityHeadersMiddleware)

# HTTPS redirect (production only)
app.add_middleware(HTTPSRedirectMiddleware, force_https=False)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(stock.router, prefix="/api/stock", tags=["stock"])

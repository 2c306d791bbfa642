"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Logging - root level from LOG_LEVEL
  2. Lifespan manager - creates tables on startup, disposes the engine on shutdown
  3. CORS middleware - allows the dashboard origins to call the API
  4. Exception handlers - maps domain errors to structured JSON responses
  5. Router registration - mounts all API endpoint groups

Running locally:
    uvicorn hapo.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hapo import realtime  # noqa: F401  registers the change-feed session hooks
from hapo.config import settings
from hapo.database import engine, Base
from hapo.exceptions import register_exception_handlers
from hapo.models import (  # noqa: F401
    Account, MoneyRequest, PendingVerification, RecurringPayment, Session, Transaction,
)
from hapo.routers import auth, children, live, recurring, requests, transactions

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      Creates all database tables if they don't exist. Against the hosted
      PostgreSQL backend the schema is expected to exist already; this is
      a convenience for the local SQLite store.

    Shutdown:
      Disposes of the database engine, closing all connections cleanly.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s %s started (balance channel: %s)",
                settings.APP_NAME, settings.APP_VERSION, settings.BALANCE_UPDATE_CHANNEL)
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Family finance API: parent and child accounts, transfers and money requests",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(children.router, prefix="/children", tags=["Children"])
app.include_router(transactions.router, prefix="/transactions", tags=["Transactions"])
app.include_router(requests.router, prefix="/requests", tags=["Money Requests"])
app.include_router(recurring.router, prefix="/recurring-payments", tags=["Recurring Payments"])
app.include_router(live.router, prefix="/ws", tags=["Live"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness probe for deployment orchestrators."""
    return {"status": "ok", "version": settings.APP_VERSION}

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from stockledger.core.config import settings
from stockledger.core.errors import LedgerError
from stockledger.core.observability import (
    http_exception_handler,
    ledger_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from stockledger.db.session import engine
from stockledger.routers import analytics, inventory

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Append-only stock ledger with weighted-average cost valuation.\n\n"
        "Every quantity or price change is recorded as an immutable stock event; "
        "item quantities are a projection of that log."
    ),
    swagger_ui_parameters={
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "inventory", "description": "Items, stock changes and the event log."},
        {"name": "analytics", "description": "Valuation, movement and price trends derived from the event log."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(LedgerError, ledger_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(inventory.router)
app.include_router(analytics.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}

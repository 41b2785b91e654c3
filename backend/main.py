"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import financial_data, plaid, sync, webhooks
from logging_config import setup_logging
from services.credential_vault import get_credential_vault

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the credential vault up front.

    A missing or malformed CREDENTIAL_ENCRYPTION_KEY raises here and stops
    the process instead of failing on the first request.
    """
    get_credential_vault()
    logger.info("Ledgerlink started")
    yield


app = FastAPI(
    title="Ledgerlink",
    description="Account connection and transaction synchronization",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for the browser app that hosts Plaid Link
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(plaid.router)
app.include_router(webhooks.router)
app.include_router(sync.router)
app.include_router(financial_data.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}

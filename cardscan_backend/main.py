"""
Connect Card Backend - Main FastAPI Application.

Routes are organized in modular files under cardscan_backend/api/:
- cards.py: Registration, extraction, commit, listing
- storage.py: Signed uploads and storage stats
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cardscan_backend.api import cards_router, storage_router
from cardscan_backend.core.config import get_settings
from cardscan_backend.core.database import create_db_and_tables

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(
    title="Connect Card Backend",
    description="Storage, registration, extraction and commit services for scanned connect cards",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    """Initialize database."""
    create_db_and_tables()
    logger.info(f"Database ready at {settings.database.url}")


# Include routers
app.include_router(cards_router, prefix="/api/v1")
app.include_router(storage_router, prefix="/api/v1")


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/api/v1/health")
def api_health_check():
    """API health check."""
    return {"status": "healthy", "api_version": "v1"}

"""
Assurea Tarification API - Main application entry point.

Loan-insurance quote brokering on top of the Exade tarification web service:
multi-insurer pricing, commission optimization, fee split and quote lifecycle.
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.api import devis, exade
from app.services.activity_service import QueuedActivitySink

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting %s...", settings.app_name)

    sink = QueuedActivitySink(maxsize=settings.activity_queue_size)
    sink.start()
    app.state.activity_sink = sink
    app.state.http_client = httpx.AsyncClient(
        limits=httpx.Limits(max_connections=settings.optimizer_max_concurrency * 2),
    )

    yield

    # Shutdown
    await app.state.http_client.aclose()
    await sink.stop()
    logger.info("Shutting down %s...", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="""
    ## Assurea Tarification API

    Loan-insurance brokering on top of Exade:

    - **Tarification**: price a borrower profile across every insurer
    - **Commission analysis**: cheapest offer and best cost / commission compromise
    - **Fee split**: apporteur, platform and broker shares of the broker fee
    - **Devis**: quote lifecycle up to the one-time push to Exade production
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(exade.router, prefix="/exade", tags=["Exade Tarification"])
app.include_router(devis.router, prefix="/devis", tags=["Devis"])


@app.get("/", tags=["Health"])
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": "1.0.0",
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    sink = getattr(app.state, "activity_sink", None)
    return {
        "status": "healthy",
        "activity_sink": "running" if sink is not None and sink.running else "stopped",
        "exade_staging": settings.exade_tarif_url,
    }

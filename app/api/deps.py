"""
FastAPI dependencies for database access, Exade services and error mapping.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.services.activity_service import QueuedActivitySink
from app.services.commission_optimizer import CommissionOptimizer
from app.services.errors import (
    AlreadyLocked,
    IllegalTransition,
    PricingError,
    QuoteNotFound,
    TarificationError,
    ValidationError,
)
from app.services.exade_client import ExadePricingClient
from app.services.quote_lifecycle import QuoteLifecycleController
from app.services.quote_store import SqlAlchemyQuoteStore

PRICING_UNAVAILABLE = "Service de tarification indisponible, réessayez plus tard"


def get_pricing_client(request: Request) -> ExadePricingClient:
    """Pricing client sharing the connection pool opened by the lifespan."""
    return ExadePricingClient(get_settings(), http_client=getattr(request.app.state, "http_client", None))


def get_activity_sink(request: Request) -> QueuedActivitySink:
    """Sink started by the application lifespan."""
    return request.app.state.activity_sink


def get_optimizer(
    client: Annotated[ExadePricingClient, Depends(get_pricing_client)],
) -> CommissionOptimizer:
    return CommissionOptimizer(client, settings=get_settings())


def get_lifecycle(
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[ExadePricingClient, Depends(get_pricing_client)],
    sink: Annotated[QueuedActivitySink, Depends(get_activity_sink)],
) -> QuoteLifecycleController:
    return QuoteLifecycleController(SqlAlchemyQuoteStore(db), client, sink)


def http_error(e: TarificationError) -> HTTPException:
    """Map a domain exception to the HTTP error shown to the caller."""
    if isinstance(e, QuoteNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, (IllegalTransition, AlreadyLocked)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, PricingError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": PRICING_UNAVAILABLE, "kind": e.kind.value},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


# Type aliases for cleaner endpoint signatures
DbSession = Annotated[AsyncSession, Depends(get_db)]
PricingClient = Annotated[ExadePricingClient, Depends(get_pricing_client)]
Optimizer = Annotated[CommissionOptimizer, Depends(get_optimizer)]
Lifecycle = Annotated[QuoteLifecycleController, Depends(get_lifecycle)]

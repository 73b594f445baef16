"""
Quote record store.

The lifecycle controller talks to a ``QuoteStore``: create / get / update and
an atomic conditional update (``update_if``) used as the compare-and-swap
guard of the production push. ``SqlAlchemyQuoteStore`` is the database
implementation; each write is committed immediately so that a claim taken by
one request is visible to every other request.
"""

import dataclasses
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.quote import Quote
from app.services.errors import QuoteNotFound


@dataclass(frozen=True)
class QuoteRecord:
    """Plain snapshot of a quote row."""
    dossier_id: str
    broker_id: str
    tariff_id: str
    total_cost_minor: int
    id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))
    apporteur_id: Optional[str] = None
    insurer: str = ""
    product: str = ""
    commission_code: Optional[str] = None
    monthly_minor: Optional[int] = None
    broker_fee_minor: int = 0
    apporteur_pct: Decimal = Decimal("0")
    apporteur_amount_minor: int = 0
    platform_fee_pct: Decimal = Decimal("0")
    platform_fee_amount_minor: int = 0
    broker_net_minor: int = 0
    status: str = "generated"
    locked: bool = False
    push_pending: bool = False
    production_simulation_id: Optional[str] = None
    last_push_error: Optional[str] = None
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[str] = None
    refused_at: Optional[datetime] = None
    refused_by: Optional[str] = None
    refusal_reason: Optional[str] = None
    pushed_at: Optional[datetime] = None


RECORD_FIELDS = tuple(f.name for f in dataclasses.fields(QuoteRecord))


class QuoteStore(Protocol):
    async def create(self, record: QuoteRecord) -> str:
        ...

    async def get(self, quote_id: str) -> QuoteRecord:
        """Raises QuoteNotFound."""
        ...

    async def update(self, quote_id: str, changes: Dict[str, Any]) -> QuoteRecord:
        """Raises QuoteNotFound."""
        ...

    async def update_if(
        self,
        quote_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any],
    ) -> Optional[QuoteRecord]:
        """
        Apply ``changes`` only if every ``expected`` field still holds.
        Returns the updated record, or None when the condition failed.
        """
        ...


def _to_record(row: Quote) -> QuoteRecord:
    return QuoteRecord(**{name: getattr(row, name) for name in RECORD_FIELDS})


class SqlAlchemyQuoteStore:
    """QuoteStore backed by the ``devis`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load(self, quote_id: str) -> Optional[Quote]:
        result = await self.db.execute(
            select(Quote)
            .where(Quote.id == quote_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, record: QuoteRecord) -> str:
        row = Quote(**dataclasses.asdict(record))
        self.db.add(row)
        await self.db.commit()
        return row.id

    async def get(self, quote_id: str) -> QuoteRecord:
        row = await self._load(quote_id)
        if row is None:
            raise QuoteNotFound(f"Devis {quote_id} introuvable")
        return _to_record(row)

    async def update(self, quote_id: str, changes: Dict[str, Any]) -> QuoteRecord:
        result = await self.db.execute(
            update(Quote).where(Quote.id == quote_id).values(**changes)
        )
        await self.db.commit()
        if result.rowcount == 0:
            raise QuoteNotFound(f"Devis {quote_id} introuvable")
        return await self.get(quote_id)

    async def update_if(
        self,
        quote_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any],
    ) -> Optional[QuoteRecord]:
        conditions = [Quote.id == quote_id]
        conditions += [getattr(Quote, name) == value for name, value in expected.items()]
        result = await self.db.execute(
            update(Quote).where(*conditions).values(**changes)
        )
        await self.db.commit()
        if result.rowcount == 0:
            # Distinguish "condition failed" from "no such quote"
            await self.get(quote_id)
            return None
        return await self.get(quote_id)

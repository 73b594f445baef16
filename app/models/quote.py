"""
Quote (devis) model: one priced Exade offer proposed to a client.

Lifecycle: generated → sent → read → accepted | refused, accepted → locked.
Once locked (pushed to Exade production) the tariff id, commission code and
broker fee never change. Rows are never hard-deleted by the application.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class Quote(Base, TimestampMixin):
    __tablename__ = "devis"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # References (owned by external collaborators)
    dossier_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    broker_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    apporteur_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Selected offer
    tariff_id: Mapped[str] = mapped_column(String(50), nullable=False)
    insurer: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    product: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    commission_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Amounts in centimes
    total_cost_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    monthly_minor: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    broker_fee_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Financial split, frozen at generation / re-pricing
    apporteur_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    apporteur_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    platform_fee_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    platform_fee_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    broker_net_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="generated", index=True)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    push_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    production_simulation_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    last_push_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Actors and timestamps
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    refused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refused_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    refusal_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pushed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Quote {self.id} tarif={self.tariff_id} status={self.status}>"

"""
Activity model: append-only feed of quote lifecycle events.
"""

from typing import Optional

from sqlalchemy import BigInteger, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class Activity(Base, TimestampMixin):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    # devis_generated, devis_sent, devis_accepted, devis_pushed_exade, ...
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    quote_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    dossier_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    actor: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

"""
Broker pricing settings: Exade credentials and commercial defaults.

Edited from the broker settings screen (outside this service); read-only for
tarification and quote lifecycle.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class BrokerPricingSettings(Base, TimestampMixin):
    __tablename__ = "broker_pricing_settings"

    broker_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Exade credentials
    exade_partner_code: Mapped[str] = mapped_column(String(20), nullable=False, default="815178")
    exade_licence_key: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    exade_endpoint_override: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    exade_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Commercial defaults
    default_commission_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    default_broker_fee_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=15000)
    default_apporteur_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("80"))

    # free | pro | unlimited
    subscription_plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free")

    def __repr__(self) -> str:
        return f"<BrokerPricingSettings {self.broker_id} plan={self.subscription_plan}>"

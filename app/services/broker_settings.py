"""
Broker pricing configuration loader.
"""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.broker_settings import BrokerPricingSettings
from app.services.errors import ValidationError
from app.services.exade_types import BrokerPricingConfig, SubscriptionPlan

logger = logging.getLogger(__name__)


def to_config(row: BrokerPricingSettings) -> BrokerPricingConfig:
    try:
        plan = SubscriptionPlan(row.subscription_plan)
    except ValueError:
        logger.warning("Broker %s has unknown plan %r, using free", row.broker_id, row.subscription_plan)
        plan = SubscriptionPlan.FREE

    return BrokerPricingConfig(
        partner_code=row.exade_partner_code,
        licence_key=row.exade_licence_key,
        endpoint_override=row.exade_endpoint_override or None,
        enabled=row.exade_enabled,
        default_commission_code=row.default_commission_code,
        default_broker_fee_minor=row.default_broker_fee_minor,
        default_apporteur_pct=Decimal(row.default_apporteur_pct),
        plan=plan,
    )


async def load_broker_config(db: AsyncSession, broker_id: str) -> BrokerPricingConfig:
    """Raises ValidationError when the broker has no Exade configuration."""
    result = await db.execute(
        select(BrokerPricingSettings).where(BrokerPricingSettings.broker_id == broker_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise ValidationError(f"Aucune configuration Exade pour le courtier {broker_id}")
    return to_config(row)

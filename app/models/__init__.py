"""
SQLAlchemy models for the Assurea tarification service.
"""

from app.models.base import Base, TimestampMixin
from app.models.quote import Quote
from app.models.broker_settings import BrokerPricingSettings
from app.models.activity import Activity

__all__ = [
    "Base",
    "TimestampMixin",
    "Quote",
    "BrokerPricingSettings",
    "Activity",
]

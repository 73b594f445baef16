"""
Broker fee split: apporteur / platform / broker.

The broker fee (frais de courtage, paid by the client) is shared between:
- the apporteur who referred the client (percentage of the fee, only when an
  apporteur is attached to the dossier)
- the platform (percentage depending on the broker's subscription plan and
  on the presence of an apporteur)
- the broker, who keeps the rest

Amounts are integer minor units (centimes). Percent-to-amount conversions are
rounded half-up to the centime; the broker net absorbs any rounding remainder.
The same function serves the live preview and the persisted quote.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Tuple, Union

from app.services.errors import ValidationError
from app.services.exade_types import (
    DEFAULT_PLATFORM_FEE_SCHEDULE,
    FinancialSplit,
    SubscriptionPlan,
)

HUNDRED = Decimal("100")

Percent = Union[Decimal, int, float, str]


def _pct(value: Percent, name: str) -> Decimal:
    # str() first so that floats such as 33.33 keep their decimal repr
    pct = value if isinstance(value, Decimal) else Decimal(str(value))
    if pct < 0 or pct > HUNDRED:
        raise ValidationError(f"{name} doit être compris entre 0 et 100 (reçu {value})")
    return pct


def _share(amount_minor: int, pct: Decimal) -> int:
    return int((Decimal(amount_minor) * pct / HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def platform_fee_pct(
    plan: Union[SubscriptionPlan, str],
    apporteur_present: bool,
    schedule: Optional[Dict[Tuple[SubscriptionPlan, bool], Decimal]] = None,
) -> Decimal:
    plan = SubscriptionPlan(plan)
    if plan == SubscriptionPlan.UNLIMITED:
        return Decimal("0")
    table = schedule or DEFAULT_PLATFORM_FEE_SCHEDULE
    try:
        return Decimal(table[(plan, apporteur_present)])
    except KeyError:
        raise ValidationError(f"Pas de frais plateforme configurés pour le plan '{plan.value}'")


def split(
    broker_fee_minor: int,
    plan: Union[SubscriptionPlan, str],
    apporteur_present: bool,
    default_apporteur_pct: Percent,
    custom_apporteur_pct: Optional[Percent] = None,
    schedule: Optional[Dict[Tuple[SubscriptionPlan, bool], Decimal]] = None,
) -> FinancialSplit:
    """
    Split a broker fee.

    Args:
        broker_fee_minor: Broker fee in centimes
        plan: Broker subscription plan (free, pro, unlimited)
        apporteur_present: Whether an apporteur is attached to the dossier
        default_apporteur_pct: Broker-wide apporteur share
        custom_apporteur_pct: Per-apporteur override, wins over the default
        schedule: Platform fee table keyed by (plan, apporteur present)

    Returns:
        FinancialSplit whose three amounts add up exactly to broker_fee_minor.
    """
    if broker_fee_minor is None or broker_fee_minor < 0:
        raise ValidationError("Les frais de courtage doivent être positifs")

    if apporteur_present:
        chosen = custom_apporteur_pct if custom_apporteur_pct is not None else default_apporteur_pct
        apporteur_pct = _pct(chosen, "La part apporteur")
    else:
        apporteur_pct = Decimal("0")

    platform_pct = platform_fee_pct(plan, apporteur_present, schedule)
    if apporteur_pct + platform_pct > HUNDRED:
        raise ValidationError("Part apporteur + frais plateforme dépassent 100% des frais de courtage")

    apporteur_amount = _share(broker_fee_minor, apporteur_pct)
    platform_amount = _share(broker_fee_minor, platform_pct)
    broker_net = broker_fee_minor - apporteur_amount - platform_amount
    # Two half-up roundings may overshoot by one centime
    if broker_net < 0:
        platform_amount += broker_net
        broker_net = 0

    return FinancialSplit(
        broker_fee_minor=broker_fee_minor,
        apporteur_share_pct_effective=apporteur_pct,
        apporteur_amount_minor=apporteur_amount,
        platform_fee_pct=platform_pct,
        platform_fee_amount_minor=platform_amount,
        broker_net_minor=broker_net,
    )

"""
Quote (devis) endpoints.
Generation from an analyzed candidate, client tracking (sent / read),
acceptance, refusal, re-pricing and the production push to Exade.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict

from app.api.deps import DbSession, Lifecycle, http_error
from app.services.broker_settings import load_broker_config
from app.services.commission_catalog import get_commission_catalog
from app.services.errors import TarificationError, ValidationError
from app.services.exade_types import (
    CommissionCandidate,
    LoanClientProfile,
    Tariff,
)
from app.services.financial_split import split

router = APIRouter()


# ============================================================================
# Schemas
# ============================================================================

class QuoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    dossier_id: str
    broker_id: str
    apporteur_id: Optional[str] = None
    tariff_id: str
    insurer: str
    product: str
    commission_code: Optional[str] = None
    total_cost_minor: int
    monthly_minor: Optional[int] = None
    broker_fee_minor: int
    apporteur_pct: Decimal
    apporteur_amount_minor: int
    platform_fee_pct: Decimal
    platform_fee_amount_minor: int
    broker_net_minor: int
    status: str
    locked: bool
    push_pending: bool
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


class TariffIn(BaseModel):
    tariff_id: str
    insurer: str = ""
    product: str = ""
    total_cost_minor: int
    monthly_minor: Optional[int] = None
    medical_formalities: List[str] = []
    lemoine_compatible: Optional[bool] = None


class QuoteCreate(BaseModel):
    """Create a quote from a candidate returned by /exade/analyze-commissions."""
    dossier_id: str
    broker_id: str
    apporteur_id: Optional[str] = None
    custom_apporteur_pct: Optional[Decimal] = None
    commission_code: str
    broker_fee_minor: Optional[int] = None
    tariff: TariffIn


class PricingUpdate(BaseModel):
    commission_code: str
    total_cost_minor: int
    monthly_minor: Optional[int] = None
    broker_fee_minor: int
    custom_apporteur_pct: Optional[Decimal] = None


class DecisionRequest(BaseModel):
    actor: str
    reason: Optional[str] = None


class PushRequest(BaseModel):
    profile: LoanClientProfile


class ReleaseRequest(BaseModel):
    actor: str


class CanPushResponse(BaseModel):
    can_push: bool
    reason: Optional[str] = None


def _candidate(commission_code: str, tariff: TariffIn) -> CommissionCandidate:
    catalog = get_commission_catalog()
    insurer_id = catalog.insurer_for_code(commission_code)
    if insurer_id is None:
        raise ValidationError(f"Code de commission inconnu: {commission_code}")
    domain_tariff = Tariff(
        tariff_id=tariff.tariff_id,
        insurer=tariff.insurer,
        product=tariff.product,
        total_cost_minor=tariff.total_cost_minor,
        monthly_minor=tariff.monthly_minor,
        medical_formalities=tuple(tariff.medical_formalities),
        lemoine_compatible=tariff.lemoine_compatible,
    )
    tier = catalog.tier(commission_code)
    return CommissionCandidate(
        insurer_id=insurer_id,
        commission_code=commission_code,
        tariff=domain_tariff,
        commission_rate=tier.effective_rate,
        commission_minor=catalog.estimate_commission(commission_code, tariff.total_cost_minor),
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.post("", response_model=QuoteResponse, status_code=status.HTTP_201_CREATED)
async def create_quote(data: QuoteCreate, db: DbSession, lifecycle: Lifecycle):
    """Create a quote (status generated) with its frozen fee split."""
    try:
        config = await load_broker_config(db, data.broker_id)
        candidate = _candidate(data.commission_code, data.tariff)
        fee = data.broker_fee_minor if data.broker_fee_minor is not None else config.default_broker_fee_minor
        fee_split = split(
            fee,
            config.plan,
            data.apporteur_id is not None,
            config.default_apporteur_pct,
            data.custom_apporteur_pct,
            config.platform_fee_schedule,
        )
        record = await lifecycle.generate(
            candidate,
            fee_split,
            dossier_id=data.dossier_id,
            broker_id=data.broker_id,
            apporteur_id=data.apporteur_id,
        )
    except TarificationError as e:
        raise http_error(e)
    return QuoteResponse.model_validate(record)


@router.get("/{quote_id}", response_model=QuoteResponse)
async def get_quote(quote_id: str, lifecycle: Lifecycle):
    try:
        record = await lifecycle.store.get(quote_id)
    except TarificationError as e:
        raise http_error(e)
    return QuoteResponse.model_validate(record)


@router.post("/{quote_id}/send", response_model=QuoteResponse)
async def mark_sent(quote_id: str, lifecycle: Lifecycle):
    try:
        record = await lifecycle.mark_sent(quote_id)
    except TarificationError as e:
        raise http_error(e)
    return QuoteResponse.model_validate(record)


@router.post("/{quote_id}/read", response_model=QuoteResponse)
async def mark_read(quote_id: str, lifecycle: Lifecycle):
    try:
        record = await lifecycle.mark_read(quote_id)
    except TarificationError as e:
        raise http_error(e)
    return QuoteResponse.model_validate(record)


@router.post("/{quote_id}/accept", response_model=QuoteResponse)
async def accept_quote(quote_id: str, data: DecisionRequest, lifecycle: Lifecycle):
    try:
        record = await lifecycle.accept(quote_id, data.actor)
    except TarificationError as e:
        raise http_error(e)
    return QuoteResponse.model_validate(record)


@router.post("/{quote_id}/refuse", response_model=QuoteResponse)
async def refuse_quote(quote_id: str, data: DecisionRequest, lifecycle: Lifecycle):
    try:
        record = await lifecycle.refuse(quote_id, data.actor, data.reason or "")
    except TarificationError as e:
        raise http_error(e)
    return QuoteResponse.model_validate(record)


@router.patch("/{quote_id}/pricing", response_model=QuoteResponse)
async def update_pricing(quote_id: str, data: PricingUpdate, db: DbSession, lifecycle: Lifecycle):
    """Change commission code / broker fee before the client decides."""
    try:
        record = await lifecycle.store.get(quote_id)
        config = await load_broker_config(db, record.broker_id)
        candidate = _candidate(
            data.commission_code,
            TariffIn(
                tariff_id=record.tariff_id,
                insurer=record.insurer,
                product=record.product,
                total_cost_minor=data.total_cost_minor,
                monthly_minor=data.monthly_minor,
            ),
        )
        if candidate.insurer_id != get_commission_catalog().insurer_for_code(record.commission_code or ""):
            raise ValidationError("Le code de commission doit appartenir au même assureur")
        fee_split = split(
            data.broker_fee_minor,
            config.plan,
            record.apporteur_id is not None,
            config.default_apporteur_pct,
            data.custom_apporteur_pct,
            config.platform_fee_schedule,
        )
        updated = await lifecycle.update_pricing(quote_id, candidate, fee_split)
    except TarificationError as e:
        raise http_error(e)
    return QuoteResponse.model_validate(updated)


@router.get("/{quote_id}/can-push", response_model=CanPushResponse)
async def can_push(quote_id: str, lifecycle: Lifecycle):
    try:
        allowed, reason = await lifecycle.can_push(quote_id)
    except TarificationError as e:
        raise http_error(e)
    return CanPushResponse(can_push=allowed, reason=reason)


@router.post("/{quote_id}/push", response_model=QuoteResponse)
async def push_quote(quote_id: str, data: PushRequest, db: DbSession, lifecycle: Lifecycle):
    """Create the durable Exade simulation for an accepted quote and lock it."""
    try:
        record = await lifecycle.store.get(quote_id)
        config = await load_broker_config(db, record.broker_id)
        pushed = await lifecycle.push_to_production(quote_id, data.profile, config)
    except TarificationError as e:
        raise http_error(e)
    return QuoteResponse.model_validate(pushed)


@router.post("/{quote_id}/release-push", response_model=QuoteResponse)
async def release_push(quote_id: str, data: ReleaseRequest, lifecycle: Lifecycle):
    """
    Clear an in-flight push left behind by an interrupted worker.

    Check on Exade that no simulation exists for this quote first.
    """
    try:
        record = await lifecycle.release_push_claim(quote_id, actor=data.actor)
    except TarificationError as e:
        raise http_error(e)
    return QuoteResponse.model_validate(record)

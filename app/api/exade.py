"""
Exade tarification endpoints.
Staging pricing, connection test, commission analysis and fee split preview.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict

from app.api.deps import DbSession, Optimizer, PricingClient, http_error
from app.services.broker_settings import load_broker_config
from app.services.commission_optimizer import CommissionOptimizer, recommendation_for
from app.services.errors import TarificationError
from app.services.exade_types import CommissionCandidate, LoanClientProfile
from app.services.financial_split import split

router = APIRouter()


# ============================================================================
# Schemas
# ============================================================================

class TariffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tariff_id: str
    insurer: str
    product: str
    total_cost_minor: int
    monthly_minor: Optional[int] = None
    first_years_cost_minor: Optional[int] = None
    membership_fee_minor: int = 0
    apporteur_fee_minor: int = 0
    capital_rate: Optional[Decimal] = None
    medical_formalities: List[str] = []
    lemoine_compatible: Optional[bool] = None
    errors: List[str] = []


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    label: str
    identifier: str
    name: str
    mime_type: str = ""
    size: Optional[int] = None
    encoding: str = ""
    compression: str = ""
    comment: str = ""
    data: str = ""


class TarifsRequest(BaseModel):
    broker_id: str
    profile: LoanClientProfile
    commission_code: Optional[str] = None
    broker_fee_minor: Optional[int] = None
    target_tariff_id: Optional[str] = None
    document_operation: Optional[int] = None


class TarifsResponse(BaseModel):
    tariffs: List[TariffResponse]
    simulation_id: Optional[str] = None
    documents: List[DocumentResponse] = []
    errors: List[str] = []


class CandidateResponse(BaseModel):
    insurer_id: str
    commission_code: str
    commission_label: Optional[str] = None
    commission_rate: Decimal
    commission_minor: int
    savings_minor: Optional[int] = None
    recommendation: str
    tariff: TariffResponse


class AnalyzeRequest(BaseModel):
    broker_id: str
    profile: LoanClientProfile
    codes_per_insurer: Optional[Dict[str, List[str]]] = None
    broker_fee_minor: Optional[int] = None


class AnalyzeResponse(BaseModel):
    best_economy: Optional[CandidateResponse] = None
    best_compromise: Optional[CandidateResponse] = None
    frontier: List[CandidateResponse] = []
    baseline_count: int = 0
    failed_calls: int = 0
    simulation_id: Optional[str] = None


class SplitPreviewRequest(BaseModel):
    broker_id: str
    broker_fee_minor: Optional[int] = None
    apporteur_present: bool = False
    custom_apporteur_pct: Optional[Decimal] = None


class SplitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    broker_fee_minor: int
    apporteur_share_pct_effective: Decimal
    apporteur_amount_minor: int
    platform_fee_pct: Decimal
    platform_fee_amount_minor: int
    broker_net_minor: int


class ConnectionTestRequest(BaseModel):
    broker_id: str


class ConnectionTestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ok: bool
    message: str
    tariff_count: int = 0
    duration_ms: int = 0


def candidate_response(
    candidate: Optional[CommissionCandidate],
    optimizer: Optional[CommissionOptimizer] = None,
) -> Optional[CandidateResponse]:
    if candidate is None:
        return None
    tier = optimizer.catalog.tier(candidate.commission_code) if optimizer else None
    return CandidateResponse(
        insurer_id=candidate.insurer_id,
        commission_code=candidate.commission_code,
        commission_label=tier.label if tier else None,
        commission_rate=candidate.commission_rate,
        commission_minor=candidate.commission_minor,
        savings_minor=candidate.savings_minor,
        recommendation=recommendation_for(candidate.commission_code),
        tariff=TariffResponse.model_validate(candidate.tariff),
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/tarifs", response_model=TarifsResponse)
async def get_tarifs(data: TarifsRequest, db: DbSession, client: PricingClient):
    """Price a profile on the staging endpoint."""
    try:
        config = await load_broker_config(db, data.broker_id)
        decoded = await client.quote(
            data.profile,
            config,
            commission_code=data.commission_code,
            broker_fee_minor=data.broker_fee_minor,
            target_tariff_id=data.target_tariff_id,
            document_operation=data.document_operation,
        )
    except TarificationError as e:
        raise http_error(e)

    return TarifsResponse(
        tariffs=[TariffResponse.model_validate(t) for t in decoded.tariffs],
        simulation_id=decoded.simulation_id,
        documents=[DocumentResponse.model_validate(d) for d in decoded.documents],
        errors=list(decoded.errors),
    )


@router.post("/test-connection", response_model=ConnectionTestResponse)
async def test_connection(data: ConnectionTestRequest, db: DbSession, client: PricingClient):
    """Check the broker's Exade credentials with a fixed test profile."""
    try:
        config = await load_broker_config(db, data.broker_id)
    except TarificationError as e:
        raise http_error(e)

    check = await client.test_connection(config)
    return ConnectionTestResponse.model_validate(check)


@router.post("/analyze-commissions", response_model=AnalyzeResponse)
async def analyze_commissions(data: AnalyzeRequest, db: DbSession, optimizer: Optimizer):
    """Sweep commission codes and return the cost / commission frontier."""
    try:
        config = await load_broker_config(db, data.broker_id)
        result = await optimizer.optimize(
            data.profile,
            config,
            candidate_codes_per_insurer=data.codes_per_insurer,
            broker_fee_minor=data.broker_fee_minor,
        )
    except TarificationError as e:
        raise http_error(e)

    return AnalyzeResponse(
        best_economy=candidate_response(result.best_economy, optimizer),
        best_compromise=candidate_response(result.best_compromise, optimizer),
        frontier=[candidate_response(c, optimizer) for c in result.frontier],
        baseline_count=result.baseline_count,
        failed_calls=result.failed_calls,
        simulation_id=result.simulation_id,
    )


@router.post("/split-preview", response_model=SplitResponse)
async def split_preview(data: SplitPreviewRequest, db: DbSession):
    """Live readout of the apporteur / platform / broker split."""
    try:
        config = await load_broker_config(db, data.broker_id)
        fee = data.broker_fee_minor if data.broker_fee_minor is not None else config.default_broker_fee_minor
        result = split(
            fee,
            config.plan,
            data.apporteur_present,
            config.default_apporteur_pct,
            data.custom_apporteur_pct,
            config.platform_fee_schedule,
        )
    except TarificationError as e:
        raise http_error(e)

    return SplitResponse.model_validate(result)

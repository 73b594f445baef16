"""
Typed inputs and outputs of the Exade tarification core.

Inputs (profile, broker configuration) are frozen pydantic models validated
at the boundary. Outputs (tariffs, documents, decoded responses) are frozen
dataclasses produced by the codec.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.services.exade_normalizer import (
    normalize_credit_type,
    normalize_financing_purpose,
    normalize_loan_type,
    normalize_membership_type,
    normalize_profession_category,
)


# ============================================================================
# Enums
# ============================================================================

class SubscriptionPlan(str, Enum):
    FREE = "free"
    PRO = "pro"
    UNLIMITED = "unlimited"


class QuoteStatus(str, Enum):
    GENERATED = "generated"
    SENT = "sent"
    READ = "read"
    ACCEPTED = "accepted"
    REFUSED = "refused"
    LOCKED = "locked"


# ============================================================================
# Inputs
# ============================================================================

class PersonProfile(BaseModel):
    """One insured person (emprunteur or co-emprunteur)."""

    model_config = ConfigDict(frozen=True)

    civility: Optional[str] = None  # M, Mme, Mlle (labels accepted, see normalizer)
    first_name: str
    last_name: str
    birth_name: Optional[str] = None
    birth_date: date
    sex: Optional[str] = None  # H / F, inferred from civility when absent

    # Risk factors, None means "not provided"
    smoker: Optional[bool] = None
    profession_category: Optional[int] = Field(default=None, ge=1, le=11)
    business_travel: Optional[int] = Field(default=None, ge=1, le=2)  # 1: < 20000 km/an, 2: au-delà
    manual_labour: Optional[int] = Field(default=None, ge=0, le=2)  # 0: aucun, 1: léger, 2: moyen/lourd
    work_at_height: Optional[int] = None
    dangerous_products: Optional[int] = None
    lemoine_outstanding: Optional[int] = None  # encours Lemoine, minor units
    politically_exposed: Optional[bool] = None
    close_to_politically_exposed: Optional[bool] = None

    # Contact
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    birth_place: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("profession_category", mode="before")
    @classmethod
    def parse_profession_category(cls, v):
        if isinstance(v, str):
            return normalize_profession_category(v)
        return v


class LoanTerms(BaseModel):
    """Loan characteristics (prêt + garantie)."""

    model_config = ConfigDict(frozen=True)

    capital_minor: int = Field(gt=0)  # centimes
    rate_pct: Decimal = Field(ge=0)  # nominal rate, e.g. 3.5
    duration_months: int = Field(gt=0)
    loan_type: Optional[int] = None
    rate_type: Optional[int] = None
    credit_type: Optional[int] = None
    financing_purpose: Optional[int] = None
    membership_type: Optional[int] = None  # 0: nouveau prêt, 3: résiliation banque, 4: résiliation délégation
    guarantee: Optional[int] = None
    coverage_quota_pct: Optional[int] = Field(default=None, ge=0, le=100)
    deferral_months: Optional[int] = None
    effective_date: Optional[date] = None
    release_date: Optional[date] = None
    current_insurance_cost_minor: Optional[int] = None  # coût de l'assurance actuelle (délégation)

    # Labels such as "Prêt relais" or "Résidence principale" are mapped to codes
    @field_validator("loan_type", mode="before")
    @classmethod
    def parse_loan_type(cls, v):
        return normalize_loan_type(v) if isinstance(v, str) else v

    @field_validator("financing_purpose", mode="before")
    @classmethod
    def parse_financing_purpose(cls, v):
        return normalize_financing_purpose(v) if isinstance(v, str) else v

    @field_validator("membership_type", mode="before")
    @classmethod
    def parse_membership_type(cls, v):
        return normalize_membership_type(v) if isinstance(v, str) else v

    @field_validator("credit_type", mode="before")
    @classmethod
    def parse_credit_type(cls, v):
        return normalize_credit_type(v) if isinstance(v, str) else v


class LoanClientProfile(BaseModel):
    """Immutable loan + client risk profile consumed by the codec."""

    model_config = ConfigDict(frozen=True)

    principal: PersonProfile
    co_borrower: Optional[PersonProfile] = None
    is_couple: bool = False
    loan: LoanTerms

    @model_validator(mode="after")
    def check_couple(self) -> "LoanClientProfile":
        if (self.co_borrower is not None) != self.is_couple:
            raise ValueError("co_borrower must be present if and only if is_couple is true")
        return self

    @property
    def persons(self) -> List[PersonProfile]:
        if self.co_borrower is not None:
            return [self.principal, self.co_borrower]
        return [self.principal]


# Platform fee percentage keyed by (plan, apporteur present?)
DEFAULT_PLATFORM_FEE_SCHEDULE: Dict[Tuple[SubscriptionPlan, bool], Decimal] = {
    (SubscriptionPlan.FREE, True): Decimal("7.5"),
    (SubscriptionPlan.FREE, False): Decimal("4"),
    (SubscriptionPlan.PRO, True): Decimal("3"),
    (SubscriptionPlan.PRO, False): Decimal("0"),
    (SubscriptionPlan.UNLIMITED, True): Decimal("0"),
    (SubscriptionPlan.UNLIMITED, False): Decimal("0"),
}


class BrokerPricingConfig(BaseModel):
    """Per-broker Exade credentials and commercial defaults. Read-only here."""

    model_config = ConfigDict(frozen=True)

    partner_code: str = "815178"  # code_courtier
    licence_key: str = ""
    endpoint_override: Optional[str] = None
    enabled: bool = True
    default_commission_code: Optional[str] = None
    default_broker_fee_minor: int = Field(default=15000, ge=0)
    default_apporteur_pct: Decimal = Field(default=Decimal("80"), ge=0, le=100)
    plan: SubscriptionPlan = SubscriptionPlan.FREE
    platform_fee_schedule: Dict[Tuple[SubscriptionPlan, bool], Decimal] = Field(
        default_factory=lambda: dict(DEFAULT_PLATFORM_FEE_SCHEDULE)
    )


# ============================================================================
# Outputs
# ============================================================================

@dataclass(frozen=True)
class Tariff:
    """One priced offer returned by Exade. Amounts in minor units."""
    tariff_id: str
    insurer: str
    product: str
    total_cost_minor: int
    monthly_minor: Optional[int] = None
    first_years_cost_minor: Optional[int] = None
    membership_fee_minor: int = 0
    apporteur_fee_minor: int = 0
    capital_rate: Optional[Decimal] = None
    medical_formalities: Tuple[str, ...] = ()
    lemoine_compatible: Optional[bool] = None
    errors: Tuple[str, ...] = ()

    @property
    def usable(self) -> bool:
        return not self.errors and self.total_cost_minor > 0


@dataclass(frozen=True)
class Document:
    """File attached to an Exade response (<fichier>)."""
    label: str
    identifier: str
    name: str
    mime_type: str = ""
    size: Optional[int] = None
    encoding: str = ""
    compression: str = ""
    comment: str = ""
    data: str = ""


@dataclass(frozen=True)
class DecodedResponse:
    tariffs: Tuple[Tariff, ...] = ()
    simulation_id: Optional[str] = None
    documents: Tuple[Document, ...] = ()
    errors: Tuple[str, ...] = ()
    faults: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.tariffs

    def tariff(self, tariff_id: str) -> Optional[Tariff]:
        for t in self.tariffs:
            if t.tariff_id == tariff_id:
                return t
        return None


@dataclass(frozen=True)
class WireMessage:
    """Ready-to-send SOAP request."""
    body: str
    inner_xml: str
    soap_action: str
    content_type: str
    defaults_applied: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CommissionCandidate:
    """(insurer, commission code, tariff) point of the cost/commission frontier."""
    insurer_id: str
    commission_code: str
    tariff: Tariff
    commission_rate: Decimal
    commission_minor: int
    savings_minor: Optional[int] = None

    @property
    def total_cost_minor(self) -> int:
        return self.tariff.total_cost_minor


@dataclass(frozen=True)
class FinancialSplit:
    broker_fee_minor: int
    apporteur_share_pct_effective: Decimal
    apporteur_amount_minor: int
    platform_fee_pct: Decimal
    platform_fee_amount_minor: int
    broker_net_minor: int


@dataclass(frozen=True)
class OptimizationResult:
    best_economy: Optional[CommissionCandidate]
    best_compromise: Optional[CommissionCandidate]
    frontier: Tuple[CommissionCandidate, ...] = ()
    baseline_count: int = 0
    failed_calls: int = 0
    simulation_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.frontier

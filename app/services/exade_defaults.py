"""
Explicit default resolution for Exade wire fields.

Every optional profile field that the tarificateur requires goes through
``resolve()``: the provided value is kept as-is (including 0 / False), and the
documented fallback is only used when the field is truly absent (None).
Callers get back whether a fallback was applied so they can warn about it.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from app.services.exade_normalizer import normalize_civility
from app.services.exade_types import LoanTerms, PersonProfile


@dataclass(frozen=True)
class ResolvedValue:
    value: Any
    defaulted: bool


# Fallback codes used by the Exade tarificateur when the dossier is silent
PERSON_RISK_DEFAULTS: Dict[str, Any] = {
    "smoker": False,
    "profession_category": 1,  # cadre / profession administrative
    "business_travel": 1,  # moins de 20 000 km/an
    "manual_labour": 0,  # aucun travail manuel
    "work_at_height": 1,
    "dangerous_products": 1,
    "lemoine_outstanding": 0,
    "politically_exposed": False,
    "close_to_politically_exposed": False,
}

LOAN_DEFAULTS: Dict[str, Any] = {
    "loan_type": 1,  # amortissable
    "rate_type": 1,  # fixe
    "credit_type": 0,
    "financing_purpose": 1,  # résidence principale
    "membership_type": 0,  # nouveau prêt
    "guarantee": 2,  # DC/PTIA/IPT/ITT
    "coverage_quota_pct": 100,
    "deferral_months": 0,
}

CIVILITY_TO_SEX = {"M": "H", "Mme": "F", "Mlle": "F"}


def resolve(value: Any, fallback: Any) -> ResolvedValue:
    """Keep ``value`` unless it is None."""
    if value is None:
        return ResolvedValue(fallback, True)
    return ResolvedValue(value, False)


def resolve_person_risks(person: PersonProfile) -> Dict[str, ResolvedValue]:
    return {
        name: resolve(getattr(person, name), fallback)
        for name, fallback in PERSON_RISK_DEFAULTS.items()
    }


def resolve_loan_codes(loan: LoanTerms) -> Dict[str, ResolvedValue]:
    return {
        name: resolve(getattr(loan, name), fallback)
        for name, fallback in LOAN_DEFAULTS.items()
    }


def resolve_civility(civility: Optional[str]) -> ResolvedValue:
    """Normalize civility to the Exade short form (M, Mme, Mlle)."""
    if civility is None or not civility.strip():
        return ResolvedValue("M", True)
    return ResolvedValue(normalize_civility(civility), False)


def resolve_sex(person: PersonProfile) -> ResolvedValue:
    """Explicit sex wins; otherwise inferred from civility (M -> H, Mme/Mlle -> F)."""
    if person.sex:
        return ResolvedValue(person.sex.upper()[:1], False)
    civility = resolve_civility(person.civility)
    return ResolvedValue(CIVILITY_TO_SEX.get(civility.value, "H"), True)


def resolve_effective_date(loan: LoanTerms, today: Optional[date] = None) -> ResolvedValue:
    return resolve(loan.effective_date, today or date.today())


def defaulted_fields(prefix: str, resolved: Dict[str, ResolvedValue]) -> List[str]:
    return [f"{prefix}.{name}" for name, r in resolved.items() if r.defaulted]

"""
Exade commission code catalog.

Each insurer exposes an ordered list of commission tiers ("paliers"). A tier
code is ``<insurer id>T<n>`` (standard tiers), ``<insurer id>PU<n>`` (prime
unique) or ``<insurer id>PR<n>`` (prêt relais). Rates are expressed either as
a flat percentage ("15% linéaire") or as a first-year / following-years pair
("30%/10%").

The catalog is built once and never mutated; get it through
``get_commission_catalog()`` or inject your own instance in tests.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from app.services.exade_types import Tariff

# Commission "a%/b%" is paid a% the first year then b% for the remaining
# years; the effective rate is averaged over a 20-year horizon.
AVERAGING_YEARS = 20

STANDARD_RATES = {
    1: "0% linéaire",
    2: "5% linéaire",
    3: "10% linéaire",
    5: "15% linéaire",
    6: "20% linéaire",
    7: "25% linéaire",
    8: "30% linéaire",
    9: "35% linéaire",
    10: "40% linéaire",
}


@dataclass(frozen=True)
class Insurer:
    id: str
    name: str
    product: str
    aliases: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CommissionTier:
    code: str
    insurer_id: str
    label: str
    rate_label: str
    effective_rate: Decimal
    is_default: bool = False
    single_premium: bool = False
    bridge_loan: bool = False

    @property
    def is_standard(self) -> bool:
        return not self.single_premium and not self.bridge_loan


def parse_rate_label(rate_label: str) -> Decimal:
    """
    Effective commission percentage for a rate label.

    "15% linéaire" -> 15
    "30%/10%"      -> (30 + 10 * 19) / 20 = 11
    anything else  -> 0
    """
    split = re.match(r"\s*(\d+(?:[.,]\d+)?)%\s*/\s*(\d+(?:[.,]\d+)?)%", rate_label)
    if split:
        first = Decimal(split.group(1).replace(",", "."))
        following = Decimal(split.group(2).replace(",", "."))
        return (first + following * (AVERAGING_YEARS - 1)) / AVERAGING_YEARS
    flat = re.match(r"\s*(\d+(?:[.,]\d+)?)%", rate_label)
    if flat:
        return Decimal(flat.group(1).replace(",", "."))
    return Decimal("0")


def _tier(
    insurer: Insurer,
    suffix: str,
    label: str,
    rate_label: str,
    is_default: bool = False,
    single_premium: bool = False,
    bridge_loan: bool = False,
) -> CommissionTier:
    return CommissionTier(
        code=f"{insurer.id}{suffix}",
        insurer_id=insurer.id,
        label=f"{insurer.name} - {label}",
        rate_label=rate_label,
        effective_rate=parse_rate_label(rate_label),
        is_default=is_default,
        single_premium=single_premium,
        bridge_loan=bridge_loan,
    )


def _standard_tiers(
    insurer: Insurer,
    default_rate: str,
    last_level: int = 10,
    with_bis: Optional[str] = None,
) -> List[CommissionTier]:
    """Paliers T1..T<last_level>; T4 is the default tier at ``default_rate``."""
    tiers = []
    for level in range(1, last_level + 1):
        if level == 4:
            tiers.append(_tier(insurer, "T4", f"Palier 4 ({default_rate})", default_rate, is_default=True))
            if with_bis:
                tiers.append(_tier(insurer, "T4bis", f"Palier 4bis ({with_bis})", with_bis))
            continue
        rate = STANDARD_RATES[level]
        tiers.append(_tier(insurer, f"T{level}", f"Palier {level} ({rate.split(' ')[0]})", rate))
    return tiers


# ============================================================================
# Catalog data
# ============================================================================

INSURERS: Tuple[Insurer, ...] = (
    Insurer("1", "GENERALI CI", "GENERALI 7301 CI", ("generali",)),
    Insurer("2", "SWISSLIFE", "SWISSLIFE L1047", ("swisslife", "swiss life")),
    Insurer("3", "MNCAP", "MNCAP ALTERNATIVE", ("mncap",)),
    Insurer("4", "CNP", "CNP CREDIT +", ("cnp",)),
    Insurer("5", "DIGITAL CRD", "ASSUREA DIGITAL CRD", ("digital crd", "digital")),
    Insurer("6", "DIGITAL CI", "ASSUREA DIGITAL CI", ("digital ci",)),
    Insurer("7", "PROTECTION+", "ASSUREA PROTECTION+", ("protection",)),
    Insurer("8", "GENERALI CRD", "GENERALI 7301 CRD", ("generali crd",)),
    Insurer("9", "OPEN CRD", "ASSUREA OPEN CRD", ("open",)),
    Insurer("10", "MAIF", "MAIF AVANTAGE", ("maif",)),
    Insurer("11", "HUMANIS", "MALAKOFF HUMANIS", ("humanis", "malakoff")),
    Insurer("12", "PERFORMANCE", "ASSUREA PERFORMANCE", ("performance", "gan")),
)


def _build_tiers() -> List[CommissionTier]:
    by_id = {insurer.id: insurer for insurer in INSURERS}
    generali_ci, swisslife, mncap, cnp = by_id["1"], by_id["2"], by_id["3"], by_id["4"]
    digital_crd, digital_ci, protection, generali_crd = by_id["5"], by_id["6"], by_id["7"], by_id["8"]
    open_crd, maif, humanis, performance = by_id["9"], by_id["10"], by_id["11"], by_id["12"]

    tiers: List[CommissionTier] = []

    tiers += _standard_tiers(generali_ci, "30%/10%", with_bis="55%/20%")
    tiers += [
        _tier(generali_ci, "PU1", "Prime unique 1 (10%)", "10% linéaire", single_premium=True),
        _tier(generali_ci, "PU2", "Prime unique 2 (20%)", "20% linéaire", single_premium=True),
    ]

    # SwissLife has its own grid, default is T2
    tiers += [
        _tier(swisslife, "T1", "Palier 1 (30%/5%)", "30%/5%"),
        _tier(swisslife, "T2", "Palier 2 (40%/10%)", "40%/10%", is_default=True),
        _tier(swisslife, "T3", "Palier 3 (40%/15%)", "40%/15%"),
        _tier(swisslife, "T4", "Palier 4 (18% linéaire)", "18% linéaire"),
        _tier(swisslife, "T5", "Palier 5 (40%/30%)", "40%/30%"),
        _tier(swisslife, "T6", "Palier 6 (40% linéaire)", "40% linéaire"),
        _tier(swisslife, "PR1", "Prêt relais 1 (5%)", "5% linéaire", bridge_loan=True),
        _tier(swisslife, "PR2", "Prêt relais 2 (10%)", "10% linéaire", bridge_loan=True),
        _tier(swisslife, "PR3", "Prêt relais 3 (15%)", "15% linéaire", bridge_loan=True),
        _tier(swisslife, "PU1", "Prime unique 1 (5%)", "5%", single_premium=True),
        _tier(swisslife, "PU2", "Prime unique 2 (10%)", "10%", single_premium=True),
        _tier(swisslife, "PU3", "Prime unique 3 (15%)", "15%", single_premium=True),
    ]

    tiers += _standard_tiers(mncap, "40%/10%")
    tiers += _standard_tiers(cnp, "30%/10%")
    tiers.append(_tier(cnp, "PR1", "Prêt relais", "Taux relais", bridge_loan=True))
    tiers += _standard_tiers(digital_crd, "40%/10%")
    tiers += _standard_tiers(digital_ci, "40%/10%")
    tiers += _standard_tiers(protection, "30%/10%")
    tiers.append(_tier(protection, "PR1", "Prêt relais", "Taux relais", bridge_loan=True))
    tiers += _standard_tiers(generali_crd, "30%/10%", with_bis="55%/20%")
    tiers += [
        _tier(generali_crd, "PU1", "Prime unique 1 (10%)", "10% linéaire", single_premium=True),
        _tier(generali_crd, "PU2", "Prime unique 2 (20%)", "20% linéaire", single_premium=True),
    ]
    tiers += _standard_tiers(open_crd, "30%/10%", last_level=8)
    tiers += _standard_tiers(maif, "30%/10%")
    tiers += _standard_tiers(humanis, "40%/10%")
    tiers += _standard_tiers(performance, "30%/10%")
    return tiers


# ============================================================================
# Catalog
# ============================================================================

class CommissionCatalog:
    """Immutable lookup over insurers and their commission tiers."""

    def __init__(self, insurers: Tuple[Insurer, ...], tiers: List[CommissionTier]):
        self._insurers: Dict[str, Insurer] = {i.id: i for i in insurers}
        self._tiers: Dict[str, CommissionTier] = {}
        self._by_insurer: Dict[str, Tuple[CommissionTier, ...]] = {}

        grouped: Dict[str, List[CommissionTier]] = {}
        for tier in tiers:
            if tier.code in self._tiers:
                raise ValueError(f"Duplicate commission code {tier.code}")
            if tier.insurer_id not in self._insurers:
                raise ValueError(f"Unknown insurer {tier.insurer_id} for code {tier.code}")
            self._tiers[tier.code] = tier
            grouped.setdefault(tier.insurer_id, []).append(tier)

        for insurer_id, insurer_tiers in grouped.items():
            defaults = [t for t in insurer_tiers if t.is_default]
            if len(defaults) != 1:
                raise ValueError(f"Insurer {insurer_id} must have exactly one default tier")
            self._by_insurer[insurer_id] = tuple(insurer_tiers)

    @property
    def insurers(self) -> List[Insurer]:
        return list(self._insurers.values())

    def insurer(self, insurer_id: str) -> Optional[Insurer]:
        return self._insurers.get(str(insurer_id))

    def codes_for_insurer(self, insurer_id: str, standard_only: bool = False) -> List[CommissionTier]:
        tiers = self._by_insurer.get(str(insurer_id), ())
        if standard_only:
            return [t for t in tiers if t.is_standard]
        return list(tiers)

    def tier(self, code: str) -> Optional[CommissionTier]:
        return self._tiers.get(code)

    def insurer_for_code(self, code: str) -> Optional[str]:
        """'2T3' -> '2'. Unknown codes return None."""
        tier = self._tiers.get(code or "")
        return tier.insurer_id if tier else None

    def default_code(self, insurer_id: str) -> Optional[str]:
        for tier in self._by_insurer.get(str(insurer_id), ()):
            if tier.is_default:
                return tier.code
        return None

    def is_legal(self, code: str, insurer_id: str) -> bool:
        return self.insurer_for_code(code) == str(insurer_id)

    def insurer_for_name(self, name: str) -> Optional[str]:
        """Best-effort mapping of a provider company name to an insurer id."""
        lowered = (name or "").lower()
        if not lowered:
            return None
        # Longest alias first so "generali crd" wins over "generali"
        candidates = [
            (alias, insurer.id) for insurer in self._insurers.values() for alias in insurer.aliases
        ]
        for alias, insurer_id in sorted(candidates, key=lambda c: len(c[0]), reverse=True):
            if alias in lowered:
                return insurer_id
        return None

    def insurer_for_tariff(self, tariff: Tariff) -> Optional[str]:
        """Exade uses the insurer id as id_tarif; fall back on the company name."""
        if tariff.tariff_id in self._insurers:
            return tariff.tariff_id
        return self.insurer_for_name(tariff.insurer)

    def estimate_commission(self, code: str, total_cost_minor: int) -> int:
        """Broker commission implied by ``code`` on a premium total, in minor units."""
        tier = self._tiers.get(code)
        if tier is None:
            return 0
        amount = Decimal(total_cost_minor) * tier.effective_rate / Decimal(100)
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@lru_cache()
def get_commission_catalog() -> CommissionCatalog:
    """Process-wide catalog, built once."""
    return CommissionCatalog(INSURERS, _build_tiers())

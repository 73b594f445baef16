"""
Commission optimizer.

Explores the commission-code space on the Exade staging endpoint to build a
client cost / broker commission trade-off:

1. Baseline call (no id_tarif): every insurer prices at its default tier.
   A failure here fails the whole optimization.
2. For each insurer present in the baseline, one targeted call (id_tarif)
   per candidate commission code. Calls run concurrently under a semaphore;
   a failed candidate is dropped, never fatal.
3. The frontier (baseline + sweep) is sorted by ascending client cost and
   two reference points are picked from it:
   - best economy: cheapest for the client, ties go to the higher commission
   - best compromise: highest ``rate - weight * cost excess %`` among the
     candidates whose cost stays within the tolerance band of the cheapest
"""

import asyncio
import logging
import re
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from app.config import Settings, get_settings
from app.services.commission_catalog import CommissionCatalog, get_commission_catalog
from app.services.errors import PricingError
from app.services.exade_client import ExadePricingClient
from app.services.exade_types import (
    BrokerPricingConfig,
    CommissionCandidate,
    LoanClientProfile,
    OptimizationResult,
    Tariff,
)

logger = logging.getLogger(__name__)


def recommendation_for(code: str) -> str:
    """Commercial positioning of a tier: economique (T1-T2), recommande (T3-T4), premium."""
    match = re.search(r"T(\d+)", code or "")
    if not match:
        return "premium"
    level = int(match.group(1))
    if level <= 2:
        return "economique"
    if level <= 4:
        return "recommande"
    return "premium"


class CommissionOptimizer:
    """Sweeps commission codes per insurer and ranks the resulting offers."""

    def __init__(
        self,
        client: ExadePricingClient,
        catalog: Optional[CommissionCatalog] = None,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.catalog = catalog or get_commission_catalog()
        self.settings = settings or get_settings()

    def _candidate(
        self,
        insurer_id: str,
        code: str,
        tariff: Tariff,
        profile: LoanClientProfile,
    ) -> CommissionCandidate:
        tier = self.catalog.tier(code)
        current = profile.loan.current_insurance_cost_minor
        return CommissionCandidate(
            insurer_id=insurer_id,
            commission_code=code,
            tariff=tariff,
            commission_rate=tier.effective_rate if tier else Decimal("0"),
            commission_minor=self.catalog.estimate_commission(code, tariff.total_cost_minor),
            savings_minor=current - tariff.total_cost_minor if current is not None else None,
        )

    def _sweep_codes(
        self,
        insurer_id: str,
        baseline_code: str,
        requested: Optional[Dict[str, Sequence[str]]],
    ) -> List[str]:
        if requested is None:
            codes = [t.code for t in self.catalog.codes_for_insurer(insurer_id, standard_only=True)]
        else:
            codes = list(requested.get(insurer_id, ()))

        legal = []
        for code in codes:
            if code == baseline_code or code in legal:
                continue
            if not self.catalog.is_legal(code, insurer_id):
                logger.warning("Commission code %s is not legal for insurer %s, skipped", code, insurer_id)
                continue
            legal.append(code)
        return legal

    def pick_compromise(self, frontier: Sequence[CommissionCandidate]) -> Optional[CommissionCandidate]:
        if not frontier:
            return None
        cheapest = min(c.total_cost_minor for c in frontier)
        tolerance = Decimal(str(self.settings.compromise_tolerance_pct))
        weight = Decimal(str(self.settings.compromise_cost_weight))
        ceiling = Decimal(cheapest) * (1 + tolerance / 100)

        best, best_key = None, None
        for candidate in frontier:
            if Decimal(candidate.total_cost_minor) > ceiling:
                continue
            if cheapest > 0:
                excess_pct = Decimal(candidate.total_cost_minor - cheapest) * 100 / Decimal(cheapest)
            else:
                excess_pct = Decimal("0")
            score = candidate.commission_rate - weight * excess_pct
            key = (score, -candidate.total_cost_minor)
            if best_key is None or key > best_key:
                best, best_key = candidate, key
        return best

    async def optimize(
        self,
        profile: LoanClientProfile,
        config: BrokerPricingConfig,
        candidate_codes_per_insurer: Optional[Dict[str, Sequence[str]]] = None,
        broker_fee_minor: Optional[int] = None,
    ) -> OptimizationResult:
        """
        Build the commission frontier for a profile.

        Args:
            profile: Loan + insured persons
            config: Broker configuration (credentials, default fee)
            candidate_codes_per_insurer: Codes to try per insurer id. None means
                every standard tier of the catalog; insurers missing from the
                mapping are not swept.
            broker_fee_minor: frais_adhesion_apporteur sent with every call,
                defaults to the broker's default fee

        Raises:
            PricingError / ValidationError from the baseline call.
        """
        fee = broker_fee_minor if broker_fee_minor is not None else config.default_broker_fee_minor

        baseline = await self.client.quote(profile, config, broker_fee_minor=fee)

        baseline_candidates: List[CommissionCandidate] = []
        for tariff in baseline.tariffs:
            if not tariff.usable:
                logger.info("Tariff %s (%s) skipped: %s", tariff.tariff_id, tariff.insurer, tariff.errors or "no cost")
                continue
            insurer_id = self.catalog.insurer_for_tariff(tariff)
            if insurer_id is None:
                logger.warning("No commission grid for tariff %s (%s)", tariff.tariff_id, tariff.insurer)
                continue
            code = self.catalog.default_code(insurer_id)
            baseline_candidates.append(self._candidate(insurer_id, code, tariff, profile))

        if not baseline_candidates:
            logger.info("Commission optimizer: no usable tariff in baseline")
            return OptimizationResult(best_economy=None, best_compromise=None, simulation_id=baseline.simulation_id)

        baseline_candidates.sort(key=lambda c: c.total_cost_minor)
        max_insurers = self.settings.optimizer_max_insurers
        swept = baseline_candidates[:max_insurers] if max_insurers > 0 else baseline_candidates

        jobs = []
        for base in swept:
            for code in self._sweep_codes(base.insurer_id, base.commission_code, candidate_codes_per_insurer):
                jobs.append((base.insurer_id, base.tariff.tariff_id, code))

        limit = max(1, min(self.settings.optimizer_max_concurrency, len(swept)))
        semaphore = asyncio.Semaphore(limit)

        async def price(insurer_id: str, tariff_id: str, code: str) -> Optional[CommissionCandidate]:
            async with semaphore:
                try:
                    decoded = await self.client.quote(
                        profile,
                        config,
                        commission_code=code,
                        broker_fee_minor=fee,
                        target_tariff_id=tariff_id,
                    )
                except PricingError as e:
                    logger.warning("Candidate %s for tariff %s dropped: %s", code, tariff_id, e)
                    return None
            tariff = decoded.tariff(tariff_id)
            if tariff is None or not tariff.usable:
                logger.info("Candidate %s for tariff %s dropped: no usable tariff returned", code, tariff_id)
                return None
            return self._candidate(insurer_id, code, tariff, profile)

        results = await asyncio.gather(*(price(*job) for job in jobs))
        sweep_candidates = [r for r in results if r is not None]
        failed = len(results) - len(sweep_candidates)

        frontier = sorted(
            baseline_candidates + sweep_candidates,
            key=lambda c: (c.total_cost_minor, -c.commission_rate, c.insurer_id, c.commission_code),
        )

        logger.info(
            "Commission optimizer: %s baseline tariff(s), %s candidate call(s), %s dropped",
            len(baseline_candidates), len(jobs), failed,
        )

        return OptimizationResult(
            best_economy=frontier[0],
            best_compromise=self.pick_compromise(frontier),
            frontier=tuple(frontier),
            baseline_count=len(baseline_candidates),
            failed_calls=failed,
            simulation_id=baseline.simulation_id,
        )

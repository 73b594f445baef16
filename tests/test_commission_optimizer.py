"""
Tests for the commission optimizer, end to end through the pricing client
with a stubbed tarificateur.
"""

from dataclasses import replace
from decimal import Decimal

import httpx
import pytest

from app.services.commission_optimizer import CommissionOptimizer, recommendation_for
from app.services.errors import PricingError
from app.services.exade_client import ExadePricingClient

BASELINE = [
    ("1", "GENERALI", "GENERALI 7301 CI", 5000),
    ("2", "SWISSLIFE", "SWISSLIFE L1047", 4800),
    ("3", "MNCAP", "MNCAP ALTERNATIVE", 5200),
]


def tarificateur(exade_xml, swept_costs, calls, failing=()):
    """
    Stub answering the baseline with BASELINE and targeted calls with
    ``swept_costs[commission code]``.
    """
    def handler(request):
        tariff_id = exade_xml.field(request, "id_tarif")
        code = exade_xml.field(request, "commissionnement")
        calls.append((tariff_id, code))
        if tariff_id is None:
            blocks = [exade_xml.tarif(*row) for row in BASELINE]
            return httpx.Response(200, text=exade_xml.envelope(exade_xml.inner(blocks, simulation_id="SIM-BASE")))
        if code in failing:
            return httpx.Response(500, text="boom")
        cost = swept_costs.get(code)
        if cost is None:
            return httpx.Response(200, text=exade_xml.envelope(exade_xml.inner()))
        name = dict((row[0], row[1]) for row in BASELINE).get(tariff_id, "")
        blocks = [exade_xml.tarif(tariff_id, name, "", cost)]
        return httpx.Response(200, text=exade_xml.envelope(exade_xml.inner(blocks)))
    return handler


@pytest.fixture
def build_optimizer(settings):
    def build(handler, **overrides):
        opt_settings = settings.model_copy(update=overrides) if overrides else settings
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return CommissionOptimizer(ExadePricingClient(opt_settings, http_client=http), settings=opt_settings)
    return build


class TestOptimize:

    async def test_happy_path(self, build_optimizer, profile, config, exade_xml):
        calls = []
        optimizer = build_optimizer(tarificateur(exade_xml, {"2T1": 4700, "2T3": 4900}, calls))

        result = await optimizer.optimize(profile, config, candidate_codes_per_insurer={"2": ["2T1", "2T3"]})

        assert result.baseline_count == 3
        assert result.failed_calls == 0
        assert result.simulation_id == "SIM-BASE"
        assert [(c.insurer_id, c.commission_code) for c in result.frontier] == [
            ("2", "2T1"), ("2", "2T2"), ("2", "2T3"), ("1", "1T4"), ("3", "3T4"),
        ]
        assert result.best_economy.insurer_id == "2"
        assert result.best_economy.commission_code == "2T1"
        # 2T3: 16.25% for +4.26% cost beats 2T2 (11.5% for +2.13%)
        assert result.best_compromise.commission_code == "2T3"
        assert len(calls) == 3

    async def test_frontier_is_sorted_by_cost(self, build_optimizer, profile, config, exade_xml):
        optimizer = build_optimizer(tarificateur(exade_xml, {"2T1": 4700, "2T3": 4900}, []))

        result = await optimizer.optimize(profile, config, candidate_codes_per_insurer={"2": ["2T1", "2T3"]})

        costs = [c.total_cost_minor for c in result.frontier]
        assert costs == sorted(costs)
        assert result.best_economy.total_cost_minor == costs[0]

    async def test_failed_candidate_is_dropped(self, build_optimizer, profile, config, exade_xml):
        handler = tarificateur(exade_xml, {"2T1": 4700, "2T3": 4900}, [], failing=("2T3",))
        optimizer = build_optimizer(handler)

        result = await optimizer.optimize(profile, config, candidate_codes_per_insurer={"2": ["2T1", "2T3"]})

        assert result.failed_calls == 1
        assert "2T3" not in [c.commission_code for c in result.frontier]
        assert result.best_compromise.commission_code == "2T2"

    async def test_candidate_without_tariff_is_dropped(self, build_optimizer, profile, config, exade_xml):
        optimizer = build_optimizer(tarificateur(exade_xml, {"2T1": 4700}, []))

        result = await optimizer.optimize(profile, config, candidate_codes_per_insurer={"2": ["2T1", "2T5"]})

        assert result.failed_calls == 1
        assert len(result.frontier) == 4

    async def test_illegal_codes_are_not_called(self, build_optimizer, profile, config, exade_xml):
        calls = []
        optimizer = build_optimizer(tarificateur(exade_xml, {}, calls))

        await optimizer.optimize(profile, config, candidate_codes_per_insurer={"2": ["1T5", "2T2", "bogus"]})

        assert calls == [(None, None)]

    async def test_baseline_failure_propagates(self, build_optimizer, profile, config):
        optimizer = build_optimizer(lambda request: httpx.Response(502, text="down"))

        with pytest.raises(PricingError):
            await optimizer.optimize(profile, config)

    async def test_empty_baseline(self, build_optimizer, profile, config, exade_xml):
        optimizer = build_optimizer(lambda request: httpx.Response(200, text=exade_xml.envelope(exade_xml.inner())))

        result = await optimizer.optimize(profile, config)

        assert result.is_empty
        assert result.best_economy is None
        assert result.best_compromise is None

    async def test_sweeps_every_standard_tier_by_default(self, build_optimizer, profile, config, exade_xml):
        calls = []

        def handler(request):
            code = exade_xml.field(request, "commissionnement")
            calls.append(code)
            if code is None:
                block = exade_xml.tarif("9", "OPEN", "ASSUREA OPEN CRD", 6000)
            else:
                level = int(code.split("T")[1])
                block = exade_xml.tarif("9", "OPEN", "ASSUREA OPEN CRD", 5000 + 100 * level)
            return httpx.Response(200, text=exade_xml.envelope(exade_xml.inner([block])))

        result = await build_optimizer(handler).optimize(profile, config)

        assert len(calls) == 8
        assert len(result.frontier) == 8
        assert result.best_economy.commission_code == "9T1"

    async def test_max_insurers_limits_the_sweep(self, build_optimizer, profile, config, exade_xml):
        calls = []
        optimizer = build_optimizer(tarificateur(exade_xml, {}, calls), optimizer_max_insurers=1)

        await optimizer.optimize(
            profile,
            config,
            candidate_codes_per_insurer={"1": ["1T3"], "2": ["2T3"], "3": ["3T3"]},
        )

        assert [tariff_id for tariff_id, _ in calls] == [None, "2"]

    async def test_broker_fee_defaults_to_config(self, build_optimizer, profile, config, exade_xml):
        fees = []

        def handler(request):
            fees.append(exade_xml.field(request, "frais_adhesion_apporteur"))
            return httpx.Response(200, text=exade_xml.envelope(exade_xml.inner()))

        await build_optimizer(handler).optimize(profile, config)

        assert fees == ["15000"]

    async def test_savings_against_current_insurance(self, build_optimizer, profile, config, exade_xml):
        optimizer = build_optimizer(tarificateur(exade_xml, {}, []))

        result = await optimizer.optimize(profile, config, candidate_codes_per_insurer={})

        assert result.best_economy.savings_minor == 900000 - 4800


class TestCompromise:

    def test_outside_tolerance_is_ignored(self, settings, candidate):
        optimizer = CommissionOptimizer(client=None, settings=settings)
        cheap = replace(candidate, commission_rate=Decimal("5"))
        expensive = replace(
            candidate,
            commission_code="2T6",
            commission_rate=Decimal("40"),
            tariff=replace(candidate.tariff, total_cost_minor=candidate.tariff.total_cost_minor * 2),
        )

        assert optimizer.pick_compromise([cheap, expensive]) is cheap
        assert optimizer.pick_compromise([]) is None

    def test_wider_tolerance(self, settings, candidate):
        optimizer = CommissionOptimizer(
            client=None,
            settings=settings.model_copy(update={"compromise_tolerance_pct": 150.0, "compromise_cost_weight": 0.1}),
        )
        cheap = replace(candidate, commission_rate=Decimal("5"))
        expensive = replace(
            candidate,
            commission_code="2T6",
            commission_rate=Decimal("40"),
            tariff=replace(candidate.tariff, total_cost_minor=candidate.tariff.total_cost_minor * 2),
        )

        assert optimizer.pick_compromise([cheap, expensive]) is expensive


class TestRecommendation:

    def test_levels(self):
        assert recommendation_for("2T1") == "economique"
        assert recommendation_for("1T4") == "recommande"
        assert recommendation_for("1T4bis") == "recommande"
        assert recommendation_for("3T8") == "premium"
        assert recommendation_for("1PU1") == "premium"

"""
Tests for the FastAPI routers, with the database on aiosqlite and the
tarificateur stubbed.
"""

import httpx
import pytest
from fastapi import Request

from app.api.deps import get_activity_sink, get_pricing_client
from app.database import get_db
from app.main import app
from app.models.broker_settings import BrokerPricingSettings
from app.services.exade_client import ExadePricingClient
from app.services.quote_store import SqlAlchemyQuoteStore


@pytest.fixture
def exade_state():
    """Mutable knobs for the stubbed tarificateur."""
    return {"status": 200, "calls": []}


@pytest.fixture
async def api(session_maker, settings, sink, exade_state, exade_xml):
    async with session_maker() as db:
        db.add(BrokerPricingSettings(
            broker_id="B-1",
            exade_partner_code="815178",
            exade_licence_key="LIC-TEST-001",
            subscription_plan="free",
        ))
        await db.commit()

    def handler(request):
        exade_state["calls"].append((str(request.url), exade_xml.field(request, "id_tarif")))
        if exade_state["status"] != 200:
            return httpx.Response(exade_state["status"], text="indisponible")
        simulation_id = "SIM-PROD-1" if "prod" in str(request.url) else "SIM-STAGE-1"
        return httpx.Response(200, text=exade_xml.envelope(exade_xml.inner([
            exade_xml.tarif("1", "GENERALI", "GENERALI 7301 CI", 500000),
            exade_xml.tarif("2", "SWISSLIFE", "SWISSLIFE L1047", 480000),
        ], simulation_id=simulation_id)))

    async def override_db():
        async with session_maker() as session:
            yield session
            await session.commit()

    def override_client():
        return ExadePricingClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_pricing_client] = override_client
    app.dependency_overrides[get_activity_sink] = lambda: sink

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def quote_payload(**overrides):
    payload = {
        "dossier_id": "D-1",
        "broker_id": "B-1",
        "apporteur_id": "A-1",
        "custom_apporteur_pct": "33.33",
        "commission_code": "2T2",
        "tariff": {
            "tariff_id": "2",
            "insurer": "SWISSLIFE",
            "product": "SWISSLIFE L1047",
            "total_cost_minor": 480000,
            "monthly_minor": 2000,
        },
    }
    payload.update(overrides)
    return payload


class TestHealth:

    async def test_root(self, api):
        response = await api.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestLifespan:

    async def test_pricing_client_shares_the_lifespan_connection_pool(self):
        async with app.router.lifespan_context(app):
            request = Request({"type": "http", "app": app})
            first = get_pricing_client(request)
            second = get_pricing_client(request)

            assert first._http is second._http is app.state.http_client

        assert app.state.http_client.is_closed


class TestExadeRoutes:

    async def test_tarifs(self, api, profile):
        response = await api.post("/exade/tarifs", json={
            "broker_id": "B-1",
            "profile": profile.model_dump(mode="json"),
        })

        assert response.status_code == 200
        body = response.json()
        assert [t["tariff_id"] for t in body["tariffs"]] == ["1", "2"]
        assert body["simulation_id"] == "SIM-STAGE-1"

    async def test_tarifs_accepts_labels(self, api, profile, exade_state):
        data = profile.model_dump(mode="json")
        data["principal"]["profession_category"] = "Médecin spécialiste"
        data["loan"]["loan_type"] = "Prêt relais"

        response = await api.post("/exade/tarifs", json={"broker_id": "B-1", "profile": data})

        assert response.status_code == 200

    async def test_unknown_broker(self, api, profile):
        response = await api.post("/exade/tarifs", json={
            "broker_id": "nobody",
            "profile": profile.model_dump(mode="json"),
        })

        assert response.status_code == 400

    async def test_provider_down(self, api, profile, exade_state):
        exade_state["status"] = 503

        response = await api.post("/exade/tarifs", json={
            "broker_id": "B-1",
            "profile": profile.model_dump(mode="json"),
        })

        assert response.status_code == 502
        assert response.json()["detail"]["kind"] == "provider_rejected"

    async def test_couple_without_co_borrower_is_rejected(self, api, profile):
        data = profile.model_dump(mode="json")
        data["is_couple"] = True

        response = await api.post("/exade/tarifs", json={"broker_id": "B-1", "profile": data})

        assert response.status_code == 422

    async def test_analyze_commissions(self, api, profile):
        response = await api.post("/exade/analyze-commissions", json={
            "broker_id": "B-1",
            "profile": profile.model_dump(mode="json"),
            "codes_per_insurer": {},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["baseline_count"] == 2
        assert body["best_economy"]["commission_code"] == "2T2"
        assert body["best_economy"]["recommendation"] == "economique"

    async def test_split_preview(self, api):
        response = await api.post("/exade/split-preview", json={
            "broker_id": "B-1",
            "apporteur_present": True,
            "custom_apporteur_pct": "33.33",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["broker_fee_minor"] == 15000
        assert body["apporteur_amount_minor"] == 5000
        assert body["platform_fee_amount_minor"] == 1125
        assert body["broker_net_minor"] == 8875

    async def test_split_preview_invalid_share(self, api):
        response = await api.post("/exade/split-preview", json={
            "broker_id": "B-1",
            "apporteur_present": True,
            "custom_apporteur_pct": "120",
        })

        assert response.status_code == 400

    async def test_connection(self, api):
        response = await api.post("/exade/test-connection", json={"broker_id": "B-1"})

        assert response.status_code == 200
        assert response.json()["ok"] is True
        assert response.json()["tariff_count"] == 2


class TestDevisRoutes:

    async def test_full_lifecycle(self, api, profile, exade_state, sink):
        created = await api.post("/devis", json=quote_payload())
        assert created.status_code == 201
        quote = created.json()
        assert quote["status"] == "generated"
        assert quote["apporteur_amount_minor"] == 5000
        assert quote["broker_net_minor"] == 8875

        quote_id = quote["id"]
        assert (await api.post(f"/devis/{quote_id}/read")).json()["status"] == "read"
        assert (await api.post(f"/devis/{quote_id}/send")).json()["status"] == "read"

        cannot = await api.get(f"/devis/{quote_id}/can-push")
        assert cannot.json()["can_push"] is False

        accepted = await api.post(f"/devis/{quote_id}/accept", json={"actor": "client-1"})
        assert accepted.json()["status"] == "accepted"

        pushed = await api.post(f"/devis/{quote_id}/push", json={"profile": profile.model_dump(mode="json")})
        assert pushed.status_code == 200
        assert pushed.json()["status"] == "locked"
        assert pushed.json()["production_simulation_id"] == "SIM-PROD-1"
        assert exade_state["calls"][-1] == ("https://prod.test/4DSOAP", "2")

        again = await api.post(f"/devis/{quote_id}/push", json={"profile": profile.model_dump(mode="json")})
        assert again.status_code == 409
        assert "devis_pushed_exade" in sink.types

    async def test_refuse_without_reason(self, api):
        quote_id = (await api.post("/devis", json=quote_payload())).json()["id"]
        await api.post(f"/devis/{quote_id}/send")

        response = await api.post(f"/devis/{quote_id}/refuse", json={"actor": "client-1"})

        assert response.status_code == 400
        assert (await api.get(f"/devis/{quote_id}")).json()["status"] == "sent"

    async def test_accept_too_early(self, api):
        quote_id = (await api.post("/devis", json=quote_payload())).json()["id"]

        response = await api.post(f"/devis/{quote_id}/accept", json={"actor": "client-1"})

        assert response.status_code == 409

    async def test_update_pricing(self, api):
        quote_id = (await api.post("/devis", json=quote_payload())).json()["id"]

        response = await api.patch(f"/devis/{quote_id}/pricing", json={
            "commission_code": "2T1",
            "total_cost_minor": 470000,
            "broker_fee_minor": 10000,
        })

        assert response.status_code == 200
        assert response.json()["commission_code"] == "2T1"
        assert response.json()["broker_fee_minor"] == 10000

    async def test_update_pricing_other_insurer(self, api):
        quote_id = (await api.post("/devis", json=quote_payload())).json()["id"]

        response = await api.patch(f"/devis/{quote_id}/pricing", json={
            "commission_code": "1T3",
            "total_cost_minor": 470000,
            "broker_fee_minor": 10000,
        })

        assert response.status_code == 400

    async def test_unknown_commission_code(self, api):
        response = await api.post("/devis", json=quote_payload(commission_code="ZZ"))

        assert response.status_code == 400

    async def test_unknown_quote(self, api):
        response = await api.get("/devis/does-not-exist")

        assert response.status_code == 404

    async def test_release_stale_push_claim(self, api, session_maker, profile):
        quote_id = (await api.post("/devis", json=quote_payload())).json()["id"]
        await api.post(f"/devis/{quote_id}/send")
        await api.post(f"/devis/{quote_id}/accept", json={"actor": "client-1"})
        async with session_maker() as db:
            await SqlAlchemyQuoteStore(db).update(quote_id, {"push_pending": True})

        blocked = await api.post(f"/devis/{quote_id}/push", json={"profile": profile.model_dump(mode="json")})
        released = await api.post(f"/devis/{quote_id}/release-push", json={"actor": "broker-1"})
        pushed = await api.post(f"/devis/{quote_id}/push", json={"profile": profile.model_dump(mode="json")})

        assert blocked.status_code == 409
        assert released.status_code == 200
        assert released.json()["push_pending"] is False
        assert pushed.json()["status"] == "locked"

"""Pytest fixtures for the tarification tests."""

import asyncio
import dataclasses
import os
import re
import tempfile
from datetime import date
from decimal import Decimal

import httpx
import pytest

# Must be set before app.config / app.database are imported
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.mkdtemp(), 'assurea_test.db')}",
)

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.config import Settings  # noqa: E402
from app.models import Base  # noqa: E402
from app.services.errors import QuoteNotFound  # noqa: E402
from app.services.exade_client import ExadePricingClient  # noqa: E402
from app.services.exade_types import (  # noqa: E402
    BrokerPricingConfig,
    CommissionCandidate,
    DecodedResponse,
    LoanClientProfile,
    LoanTerms,
    PersonProfile,
    Tariff,
)


# ============================================================================
# Exade response builders
# ============================================================================

def tarif_xml(tariff_id, insurer="", product="", cost=None, extra=""):
    parts = [f"<id_tarif>{tariff_id}</id_tarif>" if tariff_id is not None else ""]
    parts.append(f"<compagnie>{insurer}</compagnie>")
    parts.append(f"<nom>{product}</nom>")
    if cost is not None:
        parts.append(f"<cout_total_tarif>{cost}</cout_total_tarif>")
    parts.append(extra)
    return "<tarif>" + "".join(parts) + "</tarif>"


def inner_xml(tarifs=(), simulation_id=None, extra=""):
    body = "".join(tarifs)
    if simulation_id:
        body = f"<id_simulation>{simulation_id}</id_simulation>" + body
    return f"<tarifs>{body}{extra}</tarifs>"


def soap_envelope(inner, escaped=False):
    if escaped:
        payload = inner.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    else:
        payload = f"<![CDATA[{inner}]]>"
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/">'
        "<SOAP-ENV:Body><ns1:webservice_tarificateurResponse xmlns:ns1=\"http://www.4d.com/namespace/default\">"
        f"<webservice_tarificateurResult>{payload}</webservice_tarificateurResult>"
        "</ns1:webservice_tarificateurResponse></SOAP-ENV:Body></SOAP-ENV:Envelope>"
    )


def soap_fault(message):
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/">'
        "<SOAP-ENV:Body><SOAP-ENV:Fault><faultcode>SOAP-ENV:Server</faultcode>"
        f"<faultstring>{message}</faultstring></SOAP-ENV:Fault></SOAP-ENV:Body></SOAP-ENV:Envelope>"
    )


def request_field(request: httpx.Request, tag: str):
    match = re.search(rf"<{tag}>(.*?)</{tag}>", request.content.decode("utf-8"))
    return match.group(1) if match else None


@pytest.fixture
def exade_xml():
    """Builders for tarificateur answers."""
    class Builders:
        tarif = staticmethod(tarif_xml)
        inner = staticmethod(inner_xml)
        envelope = staticmethod(soap_envelope)
        fault = staticmethod(soap_fault)
        field = staticmethod(request_field)
    return Builders


# ============================================================================
# Domain fixtures
# ============================================================================

@pytest.fixture
def settings():
    return Settings(
        database_url=os.environ["DATABASE_URL"],
        exade_tarif_url="https://stage.test/4DSOAP",
        exade_production_url="https://prod.test/4DSOAP",
        optimizer_max_concurrency=3,
        optimizer_max_insurers=0,
        compromise_tolerance_pct=10.0,
        compromise_cost_weight=1.0,
    )


@pytest.fixture
def principal():
    return PersonProfile(
        civility="M",
        first_name="Paul",
        last_name="Martin",
        birth_date=date(1988, 3, 2),
        smoker=False,
        profession_category=1,
        business_travel=1,
        manual_labour=0,
        address="12 rue des Lilas",
        postal_code="69003",
        city="Lyon",
        birth_place="Lyon",
        email="paul.martin@example.com",
        phone="0611223344",
    )


@pytest.fixture
def loan():
    return LoanTerms(
        capital_minor=25000000,
        rate_pct=Decimal("3.5"),
        duration_months=240,
        effective_date=date(2026, 11, 1),
        current_insurance_cost_minor=900000,
    )


@pytest.fixture
def profile(principal, loan):
    return LoanClientProfile(principal=principal, loan=loan)


@pytest.fixture
def couple_profile(principal, loan):
    co_borrower = PersonProfile(
        civility="Mme",
        first_name="Claire",
        last_name="Martin",
        birth_name="Durand",
        birth_date=date(1990, 7, 21),
        smoker=True,
        profession_category=3,
    )
    return LoanClientProfile(principal=principal, co_borrower=co_borrower, is_couple=True, loan=loan)


@pytest.fixture
def config():
    return BrokerPricingConfig(partner_code="815178", licence_key="LIC-TEST-001")


@pytest.fixture
def candidate():
    tariff = Tariff(
        tariff_id="2",
        insurer="SWISSLIFE",
        product="SWISSLIFE L1047",
        total_cost_minor=480000,
        monthly_minor=2000,
    )
    return CommissionCandidate(
        insurer_id="2",
        commission_code="2T2",
        tariff=tariff,
        commission_rate=Decimal("11.5"),
        commission_minor=55200,
    )


# ============================================================================
# Fakes
# ============================================================================

class InMemoryQuoteStore:
    """QuoteStore fake; update_if never suspends, so it is atomic under asyncio."""

    def __init__(self):
        self.rows = {}

    async def create(self, record):
        self.rows[record.id] = record
        return record.id

    async def get(self, quote_id):
        if quote_id not in self.rows:
            raise QuoteNotFound(f"Devis {quote_id} introuvable")
        return self.rows[quote_id]

    async def update(self, quote_id, changes):
        record = await self.get(quote_id)
        self.rows[quote_id] = dataclasses.replace(record, **changes)
        return self.rows[quote_id]

    async def update_if(self, quote_id, expected, changes):
        record = await self.get(quote_id)
        if any(getattr(record, name) != value for name, value in expected.items()):
            return None
        self.rows[quote_id] = dataclasses.replace(record, **changes)
        return self.rows[quote_id]


class RecordingSink:
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    def emit(self, event_type, payload=None):
        if self.fail:
            raise RuntimeError("sink down")
        self.events.append((event_type, dict(payload or {})))

    @property
    def types(self):
        return [event_type for event_type, _ in self.events]


class FakePricingClient:
    """Stands in for ExadePricingClient in lifecycle tests."""

    def __init__(self, response=None, error=None, delay=0.01):
        self.response = response
        self.error = error
        self.delay = delay
        self.calls = []

    async def quote(self, profile, config, **kwargs):
        self.calls.append(kwargs)
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def store():
    return InMemoryQuoteStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def fakes():
    class Fakes:
        Store = InMemoryQuoteStore
        Sink = RecordingSink
        PricingClient = FakePricingClient
    return Fakes


@pytest.fixture
def production_response():
    return DecodedResponse(
        tariffs=(Tariff(tariff_id="2", insurer="SWISSLIFE", product="SWISSLIFE L1047", total_cost_minor=480000),),
        simulation_id="SIM-PROD-1",
    )


@pytest.fixture
def mock_client(settings):
    """Build an ExadePricingClient whose HTTP calls go to ``handler``."""
    def build(handler):
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ExadePricingClient(settings, http_client=http)
    return build


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'assurea.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

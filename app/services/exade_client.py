"""
Exade pricing client.

One call = one HTTP POST to the tarificateur. Two endpoints:
- staging (``exade_tarif_url``): pure pricing sandbox, simulations are not
  visible on the broker's Exade dashboard. Used for every exploratory call.
- production (``exade_production_url`` or the broker's endpoint override):
  creates a durable simulation. Only the quote push may use it.

Nothing is retried here; retry policy belongs to the caller.

Usage:
    client = ExadePricingClient()
    decoded = await client.quote(profile, config, commission_code="2T2")
"""

import logging
import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

import httpx

from app.config import Settings, get_settings
from app.services.errors import ExadeDecodeError, PricingError, PricingErrorKind, ValidationError
from app.services.exade_codec import decode_response, encode_request
from app.services.exade_types import (
    BrokerPricingConfig,
    DecodedResponse,
    LoanClientProfile,
    LoanTerms,
    PersonProfile,
)

logger = logging.getLogger(__name__)


@dataclass
class ConnectionCheck:
    """Result of a connection test against the staging endpoint."""
    ok: bool
    message: str
    tariff_count: int = 0
    duration_ms: int = 0


# Fixed profile used to probe credentials (never pushed to production)
CONNECTION_TEST_PROFILE = LoanClientProfile(
    principal=PersonProfile(
        civility="M",
        first_name="Jean",
        last_name="TEST",
        birth_date=date(1985, 6, 15),
        smoker=False,
        profession_category=1,
        business_travel=1,
        manual_labour=0,
        address="1 rue de la Paix",
        postal_code="75001",
        city="Paris",
        birth_place="Paris",
        email="test@example.com",
        phone="0600000000",
    ),
    loan=LoanTerms(
        capital_minor=20000000,
        rate_pct=Decimal("3.5"),
        duration_months=240,
    ),
)


class ExadePricingClient:
    """Async client for the Exade tarificateur web service."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            settings: Application settings (endpoints, timeout). Defaults to get_settings().
            http_client: Shared httpx client. When omitted a client is opened per call.
        """
        self.settings = settings or get_settings()
        self._http = http_client

    def endpoint(self, config: BrokerPricingConfig, use_production: bool) -> str:
        if use_production:
            return config.endpoint_override or self.settings.exade_production_url
        return self.settings.exade_tarif_url

    async def _post(self, url: str, body: str, soap_action: str, content_type: str) -> httpx.Response:
        headers = {"Content-Type": content_type, "SOAPAction": soap_action}
        timeout = self.settings.exade_timeout_seconds
        if self._http is not None:
            return await self._http.post(url, content=body.encode("utf-8"), headers=headers, timeout=timeout)
        async with httpx.AsyncClient() as client:
            return await client.post(url, content=body.encode("utf-8"), headers=headers, timeout=timeout)

    async def quote(
        self,
        profile: LoanClientProfile,
        config: BrokerPricingConfig,
        commission_code: Optional[str] = None,
        broker_fee_minor: Optional[int] = None,
        target_tariff_id: Optional[str] = None,
        use_production: bool = False,
        document_operation: Optional[int] = None,
    ) -> DecodedResponse:
        """
        Price a profile.

        Raises:
            ValidationError: broker integration disabled or incomplete profile
            PricingError: TRANSPORT, PROVIDER_REJECTED or MALFORMED_RESPONSE
        """
        if not config.enabled:
            raise ValidationError("Intégration Exade désactivée pour ce courtier")

        message = encode_request(
            profile,
            config,
            commission_code=commission_code,
            broker_fee_minor=broker_fee_minor,
            target_tariff_id=target_tariff_id,
            document_operation=document_operation,
        )
        url = self.endpoint(config, use_production)
        env = "production" if use_production else "staging"

        started = time.monotonic()
        try:
            response = await self._post(url, message.body, self.settings.exade_soap_action, message.content_type)
        except httpx.TimeoutException as e:
            logger.warning("Exade %s timeout after %.1fs: %s", env, time.monotonic() - started, e)
            raise PricingError(PricingErrorKind.TRANSPORT, f"Timeout Exade ({env})") from e
        except httpx.RequestError as e:
            logger.warning("Exade %s unreachable: %s", env, e)
            raise PricingError(PricingErrorKind.TRANSPORT, f"Exade injoignable ({env}): {e}") from e

        duration_ms = int((time.monotonic() - started) * 1000)

        if not response.is_success:
            logger.warning("Exade %s HTTP %s in %sms", env, response.status_code, duration_ms)
            raise PricingError(
                PricingErrorKind.PROVIDER_REJECTED,
                f"Exade a répondu HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            decoded = decode_response(response.text, duration_months=profile.loan.duration_months)
        except ExadeDecodeError as e:
            logger.error("Exade %s response could not be decoded: %s", env, e)
            raise PricingError(
                PricingErrorKind.MALFORMED_RESPONSE,
                str(e),
                status_code=response.status_code,
            ) from e

        if decoded.faults and decoded.is_empty:
            logger.warning("Exade %s SOAP fault: %s", env, decoded.faults[0])
            raise PricingError(
                PricingErrorKind.PROVIDER_REJECTED,
                decoded.faults[0],
                status_code=response.status_code,
            )

        logger.info(
            "Exade %s: %s tariff(s) in %sms (id_tarif=%s, commissionnement=%s)",
            env, len(decoded.tariffs), duration_ms, target_tariff_id, commission_code,
        )
        return decoded

    async def test_connection(self, config: BrokerPricingConfig) -> ConnectionCheck:
        """Price the fixed test profile on staging with the broker's credentials."""
        started = time.monotonic()
        try:
            decoded = await self.quote(CONNECTION_TEST_PROFILE, config)
        except (PricingError, ValidationError) as e:
            return ConnectionCheck(ok=False, message=str(e), duration_ms=int((time.monotonic() - started) * 1000))

        duration_ms = int((time.monotonic() - started) * 1000)
        if decoded.errors:
            return ConnectionCheck(
                ok=False,
                message=decoded.errors[0],
                tariff_count=len(decoded.tariffs),
                duration_ms=duration_ms,
            )
        if decoded.is_empty:
            return ConnectionCheck(ok=False, message="Aucun tarif retourné par Exade", duration_ms=duration_ms)

        return ConnectionCheck(
            ok=True,
            message=f"Connexion Exade OK: {len(decoded.tariffs)} tarif(s)",
            tariff_count=len(decoded.tariffs),
            duration_ms=duration_ms,
        )

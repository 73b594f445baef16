"""
Quote lifecycle controller, single authority over a quote's status.

    generated → sent → read → accepted → locked
                          ↘ refused

- mark_sent / mark_read only move forward; calls that arrive late or out of
  order are clamped to the furthest state reached.
- accept / refuse are legal from sent or read only; a refusal needs a reason.
- push_to_production is the only call that touches the Exade production
  endpoint. It is guarded by a compare-and-swap on (push_pending, locked) so
  that at most one push per quote can ever reach the provider. A failed push
  releases the claim and leaves the quote accepted, ready to be retried with
  the same tariff id, commission code and broker fee.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from app.services.errors import (
    AlreadyLocked,
    IllegalTransition,
    PricingError,
    PricingErrorKind,
    ValidationError,
)
from app.services.exade_client import ExadePricingClient
from app.services.exade_types import (
    BrokerPricingConfig,
    CommissionCandidate,
    FinancialSplit,
    LoanClientProfile,
    QuoteStatus,
)
from app.services.quote_store import QuoteRecord, QuoteStore

logger = logging.getLogger(__name__)

FORWARD_ORDER = (QuoteStatus.GENERATED.value, QuoteStatus.SENT.value, QuoteStatus.READ.value)
DECIDABLE = (QuoteStatus.SENT.value, QuoteStatus.READ.value)
EDITABLE = FORWARD_ORDER
VERIFY_ON_EXADE = "(vérifier la simulation sur Exade avant de relancer)"


class ActivitySink(Protocol):
    def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        ...


def _split_fields(split: FinancialSplit) -> Dict[str, Any]:
    return {
        "broker_fee_minor": split.broker_fee_minor,
        "apporteur_pct": split.apporteur_share_pct_effective,
        "apporteur_amount_minor": split.apporteur_amount_minor,
        "platform_fee_pct": split.platform_fee_pct,
        "platform_fee_amount_minor": split.platform_fee_amount_minor,
        "broker_net_minor": split.broker_net_minor,
    }


class QuoteLifecycleController:
    """Drives quote state transitions and the production push."""

    def __init__(
        self,
        store: QuoteStore,
        pricing_client: ExadePricingClient,
        activity_sink: ActivitySink,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.pricing_client = pricing_client
        self.activity_sink = activity_sink
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _emit(self, event_type: str, record: QuoteRecord, **extra: Any) -> None:
        payload = {"quote_id": record.id, "dossier_id": record.dossier_id, **extra}
        try:
            self.activity_sink.emit(event_type, payload)
        except Exception as e:
            logger.warning("Activity %s for quote %s not emitted: %s", event_type, record.id, e)

    # ========================================================================
    # Creation and re-pricing
    # ========================================================================

    async def generate(
        self,
        candidate: CommissionCandidate,
        split: FinancialSplit,
        dossier_id: str,
        broker_id: str,
        apporteur_id: Optional[str] = None,
    ) -> QuoteRecord:
        tariff = candidate.tariff
        if not tariff.tariff_id:
            raise ValidationError("Impossible de créer un devis sans id_tarif")

        record = QuoteRecord(
            dossier_id=dossier_id,
            broker_id=broker_id,
            apporteur_id=apporteur_id,
            tariff_id=tariff.tariff_id,
            insurer=tariff.insurer,
            product=tariff.product,
            commission_code=candidate.commission_code,
            total_cost_minor=tariff.total_cost_minor,
            monthly_minor=tariff.monthly_minor,
            status=QuoteStatus.GENERATED.value,
            **_split_fields(split),
        )
        quote_id = await self.store.create(record)
        record = await self.store.get(quote_id)
        logger.info("Quote %s generated for dossier %s (tarif %s, %s)", record.id, dossier_id, record.tariff_id, record.commission_code)
        self._emit("devis_generated", record, tariff_id=record.tariff_id, commission_code=record.commission_code)
        return record

    async def update_pricing(
        self,
        quote_id: str,
        candidate: CommissionCandidate,
        split: FinancialSplit,
    ) -> QuoteRecord:
        """Swap the commission code / fee before the client decides."""
        record = await self.store.get(quote_id)
        if record.locked:
            raise AlreadyLocked(quote_id)
        if record.status not in EDITABLE:
            raise IllegalTransition(quote_id, record.status, "update_pricing")
        if candidate.tariff.tariff_id != record.tariff_id:
            raise ValidationError("Le nouveau tarif doit porter le même id_tarif que le devis")

        changes = {
            "commission_code": candidate.commission_code,
            "total_cost_minor": candidate.tariff.total_cost_minor,
            "monthly_minor": candidate.tariff.monthly_minor,
            **_split_fields(split),
        }
        updated = await self.store.update_if(
            quote_id,
            {"status": record.status, "locked": False, "push_pending": False},
            changes,
        )
        if updated is None:
            current = await self.store.get(quote_id)
            if current.locked or current.push_pending:
                raise AlreadyLocked(quote_id)
            raise IllegalTransition(quote_id, current.status, "update_pricing")
        return updated

    # ========================================================================
    # Forward-only tracking
    # ========================================================================

    async def _advance(self, quote_id: str, target: str) -> QuoteRecord:
        record = await self.store.get(quote_id)
        while record.status in FORWARD_ORDER and FORWARD_ORDER.index(record.status) < FORWARD_ORDER.index(target):
            now = self.clock()
            changes: Dict[str, Any] = {"status": target}
            if record.sent_at is None:
                changes["sent_at"] = now
            if target == QuoteStatus.READ.value:
                changes["read_at"] = now
            updated = await self.store.update_if(quote_id, {"status": record.status}, changes)
            if updated is not None:
                self._emit(f"devis_{'sent' if target == QuoteStatus.SENT.value else 'read'}", updated)
                return updated
            # Somebody else moved it, re-evaluate
            record = await self.store.get(quote_id)
        return record

    async def mark_sent(self, quote_id: str) -> QuoteRecord:
        return await self._advance(quote_id, QuoteStatus.SENT.value)

    async def mark_read(self, quote_id: str) -> QuoteRecord:
        return await self._advance(quote_id, QuoteStatus.READ.value)

    # ========================================================================
    # Client decision
    # ========================================================================

    async def _decide(self, quote_id: str, action: str, changes: Dict[str, Any]) -> QuoteRecord:
        record = await self.store.get(quote_id)
        if record.status not in DECIDABLE:
            raise IllegalTransition(quote_id, record.status, action)
        updated = await self.store.update_if(quote_id, {"status": record.status}, changes)
        if updated is None:
            current = await self.store.get(quote_id)
            raise IllegalTransition(quote_id, current.status, action)
        return updated

    async def accept(self, quote_id: str, actor: str) -> QuoteRecord:
        updated = await self._decide(quote_id, "accept", {
            "status": QuoteStatus.ACCEPTED.value,
            "accepted_at": self.clock(),
            "accepted_by": actor,
        })
        logger.info("Quote %s accepted by %s", quote_id, actor)
        self._emit("devis_accepted", updated, actor=actor)
        return updated

    async def refuse(self, quote_id: str, actor: str, reason: str) -> QuoteRecord:
        if reason is None or not reason.strip():
            raise ValidationError("Raison du refus obligatoire")
        updated = await self._decide(quote_id, "refuse", {
            "status": QuoteStatus.REFUSED.value,
            "refused_at": self.clock(),
            "refused_by": actor,
            "refusal_reason": reason,
        })
        logger.info("Quote %s refused by %s", quote_id, actor)
        self._emit("devis_refused", updated, actor=actor, reason=reason)
        return updated

    # ========================================================================
    # Production push
    # ========================================================================

    async def can_push(self, quote_id: str) -> Tuple[bool, Optional[str]]:
        record = await self.store.get(quote_id)
        if record.locked:
            return False, "Devis déjà envoyé sur Exade"
        if record.push_pending:
            return False, "Envoi vers Exade en cours"
        if record.status != QuoteStatus.ACCEPTED.value:
            return False, "Le devis doit être accepté par le client"
        return True, None

    async def _release_claim(self, claimed: QuoteRecord, error: str) -> None:
        # Runs to completion even if the push task is cancelled again
        await asyncio.shield(self.store.update_if(
            claimed.id,
            {"push_pending": True, "locked": False},
            {"push_pending": False, "last_push_error": error},
        ))
        logger.error("Exade push failed for quote %s (tarif %s): %s", claimed.id, claimed.tariff_id, error)
        self._emit("devis_push_failed", claimed, error=error)

    async def release_push_claim(self, quote_id: str, actor: str) -> QuoteRecord:
        """
        Hand back a quote stuck with push_pending (worker killed mid-push).

        Only call once the broker has checked on Exade that no simulation was
        created for this quote, otherwise the next push creates a duplicate.

        Raises:
            AlreadyLocked: the push went through, nothing to release
        """
        record = await self.store.get(quote_id)
        if record.locked:
            raise AlreadyLocked(quote_id)
        if not record.push_pending:
            return record

        released = await self.store.update_if(
            quote_id,
            {"push_pending": True, "locked": False},
            {"push_pending": False, "last_push_error": f"Envoi débloqué par {actor}"},
        )
        if released is None:
            current = await self.store.get(quote_id)
            if current.locked:
                raise AlreadyLocked(quote_id)
            return current

        logger.warning("Push claim on quote %s released by %s", quote_id, actor)
        self._emit("devis_push_released", released, actor=actor)
        return released

    async def push_to_production(
        self,
        quote_id: str,
        profile: LoanClientProfile,
        config: BrokerPricingConfig,
    ) -> QuoteRecord:
        """
        Create the durable Exade simulation for an accepted quote.

        Uses the quote's own tariff id, commission code and broker fee, never
        the broker's current defaults.

        Raises:
            AlreadyLocked: quote already pushed or a push is in flight
            IllegalTransition: quote is not accepted
            PricingError / ValidationError: the push failed, quote left retryable
        """
        record = await self.store.get(quote_id)
        if record.locked or record.push_pending:
            raise AlreadyLocked(quote_id)
        if record.status != QuoteStatus.ACCEPTED.value:
            raise IllegalTransition(quote_id, record.status, "push_to_production")

        claimed = await self.store.update_if(
            quote_id,
            {"status": QuoteStatus.ACCEPTED.value, "locked": False, "push_pending": False},
            {"push_pending": True},
        )
        if claimed is None:
            current = await self.store.get(quote_id)
            if current.locked or current.push_pending:
                raise AlreadyLocked(quote_id)
            raise IllegalTransition(quote_id, current.status, "push_to_production")

        try:
            decoded = await self.pricing_client.quote(
                profile,
                config,
                commission_code=claimed.commission_code,
                broker_fee_minor=claimed.broker_fee_minor,
                target_tariff_id=claimed.tariff_id,
                use_production=True,
            )
            if not decoded.simulation_id:
                raise PricingError(PricingErrorKind.PROVIDER_REJECTED, "ID de simulation non retourné")
        except Exception as e:
            error = str(e)
            if isinstance(e, PricingError) and e.kind == PricingErrorKind.TRANSPORT:
                # The simulation may exist on Exade already
                error = f"{error} {VERIFY_ON_EXADE}"
            await self._release_claim(claimed, error)
            raise
        except asyncio.CancelledError:
            await self._release_claim(claimed, f"Envoi interrompu {VERIFY_ON_EXADE}")
            raise

        pushed = decoded.tariff(claimed.tariff_id)
        if pushed is not None and pushed.total_cost_minor != claimed.total_cost_minor:
            logger.warning(
                "Quote %s: production price %s differs from quoted %s",
                quote_id, pushed.total_cost_minor, claimed.total_cost_minor,
            )

        locked = await self.store.update_if(
            quote_id,
            {"push_pending": True, "locked": False},
            {
                "locked": True,
                "push_pending": False,
                "status": QuoteStatus.LOCKED.value,
                "production_simulation_id": decoded.simulation_id,
                "pushed_at": self.clock(),
                "last_push_error": None,
            },
        )
        if locked is None:
            raise AlreadyLocked(quote_id)

        logger.info("Quote %s pushed to Exade production (simulation %s)", quote_id, decoded.simulation_id)
        self._emit(
            "devis_pushed_exade",
            locked,
            simulation_id=decoded.simulation_id,
            tariff_id=locked.tariff_id,
            commission_code=locked.commission_code,
        )
        return locked

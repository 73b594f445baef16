"""
Tests for the SQLAlchemy quote store (aiosqlite).
"""

from decimal import Decimal

import pytest

from app.services.errors import QuoteNotFound
from app.services.quote_store import QuoteRecord, SqlAlchemyQuoteStore


def new_record(**overrides):
    values = dict(
        dossier_id="D-1",
        broker_id="B-1",
        tariff_id="2",
        total_cost_minor=480000,
        insurer="SWISSLIFE",
        commission_code="2T2",
        broker_fee_minor=15000,
        apporteur_pct=Decimal("80"),
        apporteur_amount_minor=12000,
        platform_fee_pct=Decimal("7.5"),
        platform_fee_amount_minor=1125,
        broker_net_minor=1875,
    )
    values.update(overrides)
    return QuoteRecord(**values)


class TestSqlAlchemyQuoteStore:

    async def test_create_and_get(self, session_maker):
        async with session_maker() as db:
            store = SqlAlchemyQuoteStore(db)
            quote_id = await store.create(new_record())

            record = await store.get(quote_id)

        assert record.id == quote_id
        assert record.status == "generated"
        assert record.apporteur_pct == Decimal("80")
        assert record.platform_fee_pct == Decimal("7.5")
        assert record.locked is False

    async def test_get_missing(self, session_maker):
        async with session_maker() as db:
            with pytest.raises(QuoteNotFound):
                await SqlAlchemyQuoteStore(db).get("missing")

    async def test_update(self, session_maker):
        async with session_maker() as db:
            store = SqlAlchemyQuoteStore(db)
            quote_id = await store.create(new_record())

            updated = await store.update(quote_id, {"status": "sent"})

        assert updated.status == "sent"

    async def test_update_missing(self, session_maker):
        async with session_maker() as db:
            with pytest.raises(QuoteNotFound):
                await SqlAlchemyQuoteStore(db).update("missing", {"status": "sent"})

    async def test_conditional_update(self, session_maker):
        async with session_maker() as db:
            store = SqlAlchemyQuoteStore(db)
            quote_id = await store.create(new_record(status="accepted"))

            claimed = await store.update_if(
                quote_id,
                {"status": "accepted", "locked": False, "push_pending": False},
                {"push_pending": True},
            )
            second = await store.update_if(
                quote_id,
                {"status": "accepted", "locked": False, "push_pending": False},
                {"push_pending": True},
            )

        assert claimed is not None
        assert claimed.push_pending is True
        assert second is None

    async def test_claim_is_visible_from_another_session(self, session_maker):
        async with session_maker() as first, session_maker() as second:
            quote_id = await SqlAlchemyQuoteStore(first).create(new_record(status="accepted"))
            await SqlAlchemyQuoteStore(first).update_if(quote_id, {"push_pending": False}, {"push_pending": True})

            seen = await SqlAlchemyQuoteStore(second).get(quote_id)
            retry = await SqlAlchemyQuoteStore(second).update_if(
                quote_id, {"push_pending": False}, {"push_pending": True},
            )

        assert seen.push_pending is True
        assert retry is None

    async def test_conditional_update_missing(self, session_maker):
        async with session_maker() as db:
            with pytest.raises(QuoteNotFound):
                await SqlAlchemyQuoteStore(db).update_if("missing", {"status": "sent"}, {"status": "read"})

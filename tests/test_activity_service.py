"""
Tests for the fire-and-forget activity feed.
"""

from decimal import Decimal

from sqlalchemy import select

from app.models.activity import Activity
from app.services import activity_service
from app.services.activity_service import ActivityEvent, QueuedActivitySink, store_activity


class TestQueuedActivitySink:

    async def test_events_are_delivered_in_order(self):
        delivered = []

        async def deliver(event):
            delivered.append(event.event_type)

        sink = QueuedActivitySink(deliver=deliver)
        sink.start()
        sink.emit("devis_generated", {"quote_id": "q1"})
        sink.emit("devis_sent", {"quote_id": "q1"})
        await sink.stop()

        assert delivered == ["devis_generated", "devis_sent"]
        assert not sink.running

    async def test_emit_before_start_is_dropped(self):
        sink = QueuedActivitySink(deliver=None)

        sink.emit("devis_sent", {"quote_id": "q1"})

        assert sink.dropped == 1

    async def test_full_queue_drops_without_blocking(self):
        delivered = []

        async def deliver(event):
            delivered.append(event.event_type)

        sink = QueuedActivitySink(deliver=deliver, maxsize=1)
        sink.start()
        sink.emit("devis_sent")
        sink.emit("devis_read")
        await sink.stop()

        assert sink.dropped == 1
        assert delivered == ["devis_sent"]

    async def test_delivery_failure_does_not_stop_the_worker(self):
        delivered = []

        async def deliver(event):
            if event.event_type == "boom":
                raise RuntimeError("database down")
            delivered.append(event.event_type)

        sink = QueuedActivitySink(deliver=deliver)
        sink.start()
        sink.emit("boom")
        sink.emit("devis_accepted")
        await sink.stop()

        assert delivered == ["devis_accepted"]


class TestStoreActivity:

    async def test_event_is_persisted(self, session_maker, monkeypatch):
        monkeypatch.setattr(activity_service, "async_session_maker", session_maker)

        await store_activity(ActivityEvent(
            event_type="devis_refused",
            payload={"quote_id": "q1", "dossier_id": "D-1", "actor": "client-1", "amount": Decimal("12.5")},
        ))

        async with session_maker() as db:
            rows = (await db.execute(select(Activity))).scalars().all()

        assert len(rows) == 1
        assert rows[0].event_type == "devis_refused"
        assert rows[0].quote_id == "q1"
        assert rows[0].actor == "client-1"
        assert rows[0].payload["amount"] == "12.5"

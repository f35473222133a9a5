"""
Audit Logger Tests

In-memory trail, sink delivery, retry buffer and the failure hook.
"""

from datetime import timedelta

import pytest

from govgate.audit.events import AuditEvent, AuditEventType
from govgate.audit.logger import AuditLogger, event_to_record, record_to_event
from govgate.errors import AuditDeliveryFailure
from govgate.storage.memory import InMemoryAuditSink
from govgate.storage.ports import AuditSink

from tests.conftest import T0


class FlakySink(AuditSink):
    """Fails while `down` is set, then delegates to an in-memory sink."""

    def __init__(self):
        self.down = True
        self.inner = InMemoryAuditSink()

    async def append(self, record):
        if self.down:
            raise ConnectionError("sink unavailable")
        await self.inner.append(record)

    async def query(self, **kwargs):
        return await self.inner.query(**kwargs)


def _event(n: int, actor: str = "u1", session: str | None = "ses_1") -> AuditEvent:
    return AuditEvent(
        action=AuditEventType.DECISION,
        timestamp=T0 + timedelta(seconds=n),
        actor_id=actor,
        target="incident",
        decision="allow",
        session_id=session,
    )


class TestRecording:
    """Recording and querying."""

    @pytest.mark.asyncio
    async def test_record_without_sink(self):
        audit = AuditLogger()
        await audit.record(_event(1))
        assert audit.total_events() == 1
        assert audit.pending_count == 0

    @pytest.mark.asyncio
    async def test_record_delivers_to_sink(self):
        sink = InMemoryAuditSink()
        audit = AuditLogger(sink=sink)

        event = _event(1)
        await audit.record(event)

        stored = await sink.query(actor_id="u1")
        assert [record_to_event(r) for r in stored] == [event]

    @pytest.mark.asyncio
    async def test_queries_with_truncation(self):
        audit = AuditLogger()
        for n in range(5):
            await audit.record(_event(n))
        await audit.record(_event(9, actor="u2", session="ses_2"))

        events, truncated = audit.get_by_session("ses_1", tail=3)
        assert [e.timestamp for e in events] == [T0 + timedelta(seconds=n) for n in (2, 3, 4)]
        assert truncated is True

        events, truncated = audit.get_by_actor("u2")
        assert len(events) == 1
        assert truncated is False
        assert audit.tail(2)[-1].actor_id == "u2"

    @pytest.mark.asyncio
    async def test_memory_bound_evicts_oldest(self):
        audit = AuditLogger(max_events=10)
        for n in range(11):
            await audit.record(_event(n))
        assert audit.tail(100)[0].timestamp == T0 + timedelta(seconds=1)
        assert audit.total_events() == 11

    @pytest.mark.asyncio
    async def test_recorded_trail_cannot_be_changed(self):
        audit = AuditLogger()
        event = AuditEvent(
            action=AuditEventType.DECISION,
            timestamp=T0,
            actor_id="u1",
            rationale=["access granted"],
            data={"fields": ["state"]},
        )
        await audit.record(event)

        assert isinstance(audit.tail(1)[0].rationale, tuple)
        with pytest.raises(AttributeError):
            audit.tail(1)[0].rationale.append("forged")

        event.data["fields"].append("priority")
        audit.tail(1)[0].data["fields"].append("caller_ssn")
        audit.get_by_actor("u1")[0][0].data["extra"] = True

        recorded = audit.tail(1)[0]
        assert recorded.rationale == ("access granted",)
        assert recorded.data == {"fields": ["state"]}

    def test_event_to_dict(self):
        data = _event(1).to_dict()
        assert data["action"] == "governance.decision"
        assert data["timestamp"] == (T0 + timedelta(seconds=1)).isoformat()

    def test_record_conversion_keeps_fields(self):
        event = _event(1)
        record = event_to_record(event)
        assert record.event_type == "governance.decision"
        assert record_to_event(record) == event


class TestDeliveryFailures:
    """Sink outages."""

    @pytest.mark.asyncio
    async def test_record_raises_retryable(self):
        audit = AuditLogger(sink=FlakySink())

        with pytest.raises(AuditDeliveryFailure) as exc:
            await audit.record(_event(1))

        assert exc.value.retryable is True
        assert audit.pending_count == 1
        assert audit.total_events() == 1

    @pytest.mark.asyncio
    async def test_record_safely_calls_async_hook(self):
        seen = []

        async def hook(failure):
            seen.append(failure.event_id)

        audit = AuditLogger(sink=FlakySink(), on_delivery_failure=hook)
        event = _event(1)

        assert await audit.record_safely(event) is False
        assert seen == [event.event_id]

    @pytest.mark.asyncio
    async def test_hook_errors_are_contained(self):
        def hook(failure):
            raise RuntimeError("pager offline")

        audit = AuditLogger(sink=FlakySink(), on_delivery_failure=hook)
        assert await audit.record_safely(_event(1)) is False

    @pytest.mark.asyncio
    async def test_retry_delivers_in_order(self):
        sink = FlakySink()
        audit = AuditLogger(sink=sink)
        for n in range(3):
            await audit.record_safely(_event(n))

        assert await audit.retry_pending() == 0
        sink.down = False
        assert await audit.retry_pending() == 3

        stored = await sink.inner.query()
        assert [r.timestamp for r in stored] == [T0 + timedelta(seconds=n) for n in range(3)]
        assert audit.pending_count == 0

    @pytest.mark.asyncio
    async def test_pending_buffer_bounded(self):
        audit = AuditLogger(sink=FlakySink(), max_pending=2)
        for n in range(3):
            await audit.record_safely(_event(n))
        assert audit.pending_count == 2

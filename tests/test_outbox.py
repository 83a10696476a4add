import asyncio

from sqlalchemy import select

from debitrecon.common.logging import trace_id_ctx
from debitrecon.common.outbox import OutboxPublisher
from debitrecon.services.direct_debit.events import (
    PD_BATCH_OUTBOUND_CREATED,
    OutboxEventLog,
    log_for_agencies,
)
from debitrecon.services.direct_debit.models import OutboxEvent
from debitrecon.services.direct_debit.schemas import ImportSummary


class _FakeKafka:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def publish(self, topic, event):
        if self.fail:
            raise ConnectionError("broker down")
        self.sent.append((topic, event))

    async def close(self):
        pass


def _log_two_agencies(session_factory):
    token = trace_id_ctx.set("trace-abc")
    try:
        with session_factory() as db:
            log_for_agencies(
                OutboxEventLog(topic="billing.events"),
                db,
                [5, 6, 5],
                PD_BATCH_OUTBOUND_CREATED,
                ImportSummary(paid=1),
                actor_user_id=3,
            )
            db.commit()
    finally:
        trace_id_ctx.reset(token)


def test_event_log_writes_one_envelope_per_distinct_agency(session_factory):
    _log_two_agencies(session_factory)

    with session_factory() as db:
        events = db.execute(select(OutboxEvent)).scalars().all()
    assert sorted(e.aggregate_id for e in events) == ["5", "6"]
    envelope = events[0].payload
    assert envelope["event_type"] == PD_BATCH_OUTBOUND_CREATED
    assert envelope["trace_id"] == "trace-abc"
    assert envelope["actor_user_id"] == 3
    assert envelope["payload"]["paid"] == 1
    assert {e.status for e in events} == {"PENDING"}
    assert {e.topic for e in events} == {"billing.events"}


def test_publisher_sends_pending_events_and_marks_them_sent(session_factory):
    _log_two_agencies(session_factory)
    kafka = _FakeKafka()
    publisher = OutboxPublisher(session_factory, OutboxEvent, "direct-debit", kafka=kafka)

    delivered = asyncio.run(publisher.publish_once())

    assert delivered == 2
    assert {topic for topic, _ in kafka.sent} == {"billing.events"}
    assert sorted(event.aggregate_id for _, event in kafka.sent) == ["5", "6"]
    with session_factory() as db:
        assert {e.status for e in db.execute(select(OutboxEvent)).scalars()} == {"SENT"}
    assert asyncio.run(publisher.publish_once()) == 0


def test_publisher_requeues_on_broker_failure(session_factory):
    _log_two_agencies(session_factory)
    publisher = OutboxPublisher(session_factory, OutboxEvent, "direct-debit", kafka=_FakeKafka(fail=True))

    assert asyncio.run(publisher.publish_once()) == 0

    with session_factory() as db:
        events = db.execute(select(OutboxEvent)).scalars().all()
    assert {e.status for e in events} == {"PENDING"}
    assert {e.sent_at for e in events} == {None}

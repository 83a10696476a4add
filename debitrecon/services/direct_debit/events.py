"""Billing audit events written through the transactional outbox."""

from collections.abc import Iterable
from typing import Protocol
from uuid import uuid4

from pydantic import BaseModel

from debitrecon.common.config import settings
from debitrecon.common.events import EventEnvelope
from debitrecon.common.logging import trace_id_ctx
from debitrecon.services.direct_debit.models import OutboxEvent


PD_BATCH_OUTBOUND_CREATED = "PD_BATCH_OUTBOUND_CREATED"
PD_BATCH_INBOUND_IMPORTED = "PD_BATCH_INBOUND_IMPORTED"
ATTEMPT_MARKED_PAID = "ATTEMPT_MARKED_PAID"
ATTEMPT_MARKED_REJECTED = "ATTEMPT_MARKED_REJECTED"


class EventLog(Protocol):
    def log_event(
        self, db, agency_id: int, event_type: str, payload: BaseModel, actor_user_id: int | None
    ) -> None: ...


class OutboxEventLog:
    """Adds one outbox row per event inside the caller's transaction."""

    def __init__(self, topic: str | None = None) -> None:
        self.topic = topic or settings.billing_events_topic

    def log_event(
        self, db, agency_id: int, event_type: str, payload: BaseModel, actor_user_id: int | None
    ) -> None:
        envelope = EventEnvelope(
            event_type=event_type,
            aggregate_id=str(agency_id),
            trace_id=trace_id_ctx.get() or str(uuid4()),
            actor_user_id=actor_user_id,
            payload=payload.model_dump(mode="json"),
        )
        db.add(
            OutboxEvent(
                aggregate_type="agency",
                aggregate_id=str(agency_id),
                event_type=event_type,
                topic=self.topic,
                payload=envelope.model_dump(),
            )
        )


def log_for_agencies(
    event_log: EventLog,
    db,
    agency_ids: Iterable[int],
    event_type: str,
    payload: BaseModel,
    actor_user_id: int | None,
) -> None:
    """One event per distinct agency, in first-seen order."""

    for agency_id in dict.fromkeys(agency_ids):
        event_log.log_event(db, agency_id, event_type, payload, actor_user_id)

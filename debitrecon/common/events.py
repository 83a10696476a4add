"""Billing event envelope and the Kafka producer the outbox publisher uses."""

import json
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from aiokafka import AIOKafkaProducer
from pydantic import BaseModel, Field

from debitrecon.common.config import settings


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class EventEnvelope(BaseModel):
    """Audit event as stored in the outbox and sent to Kafka; aggregate is the agency."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    aggregate_id: str
    occurred_at: str = Field(default_factory=_utc_now_iso)
    trace_id: str
    actor_user_id: int | None = None
    payload: dict[str, Any]

    def to_record(self) -> tuple[bytes, bytes, list[tuple[str, bytes]]]:
        """Kafka key, value and headers for this envelope."""

        headers = [("event_type", self.event_type.encode()), ("trace_id", self.trace_id.encode())]
        return self.aggregate_id.encode(), json.dumps(self.model_dump()).encode("utf-8"), headers


class KafkaBus:
    """Started on first publish; one producer per process."""

    def __init__(self, bootstrap_servers: str | None = None) -> None:
        self.bootstrap_servers = bootstrap_servers or settings.kafka_bootstrap_servers
        self._producer: AIOKafkaProducer | None = None

    async def _started(self) -> AIOKafkaProducer:
        if self._producer is None:
            producer = AIOKafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                client_id=settings.service_name,
                acks="all",
                enable_idempotence=True,
            )
            await producer.start()
            self._producer = producer
        return self._producer

    async def publish(self, topic: str, event: EventEnvelope) -> None:
        key, value, headers = event.to_record()
        producer = await self._started()
        # Keyed by agency id; per-agency order holds within a partition.
        await producer.send_and_wait(topic, value, key=key, headers=headers)

    async def close(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None

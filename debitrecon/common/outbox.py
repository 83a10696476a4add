"""Transactional outbox publishing.

Producers add rows to an `outbox_events`-shaped table inside their own
transactions; `OutboxPublisher` claims pending (or stale in-flight) rows, ships
them to Kafka and marks them sent, requeueing anything that fails to publish.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_, select, update

from debitrecon.common.events import EventEnvelope, KafkaBus
from debitrecon.common.logging import logger
from debitrecon.common.metrics import outbox_oldest_pending_age_seconds, outbox_pending_total


PENDING_STATUSES = ("PENDING", "PROCESSING")


def claim_outbox_batch(db, outbox_model, limit: int = 100, processing_timeout_seconds: int = 30) -> list[dict]:
    """Atomically claim a batch of pending/stale rows for publishing."""

    table = outbox_model.__table__
    now = datetime.now(timezone.utc)
    stale_before = now - timedelta(seconds=processing_timeout_seconds)
    claim_ids = (
        select(table.c.id)
        .where(
            or_(
                table.c.status == "PENDING",
                (table.c.status == "PROCESSING") & (table.c.sent_at.is_not(None)) & (table.c.sent_at < stale_before),
            )
        )
        .order_by(table.c.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .cte("claim_ids")
    )
    rows = db.execute(
        update(table)
        .where(table.c.id.in_(select(claim_ids.c.id)))
        .values(status="PROCESSING", sent_at=now)
        .returning(table.c.id, table.c.topic, table.c.payload)
    ).all()
    return [{"id": row.id, "topic": row.topic, "payload": row.payload} for row in rows]


def set_outbox_status(db, outbox_model, event_id: str, status: str) -> None:
    """Finish one claimed row: `SENT` on delivery, `PENDING` to retry later."""

    table = outbox_model.__table__
    sent_at = datetime.now(timezone.utc) if status == "SENT" else None
    db.execute(
        update(table)
        .where(table.c.id == event_id, table.c.status == "PROCESSING")
        .values(status=status, sent_at=sent_at)
    )


def update_outbox_backlog_metrics(db, outbox_model, service_name: str) -> None:
    """Update gauges for pending outbox depth and oldest age."""

    table = outbox_model.__table__
    pending_count = db.execute(
        select(func.count()).select_from(table).where(table.c.status.in_(PENDING_STATUSES))
    ).scalar_one()
    oldest_pending = db.execute(
        select(func.min(table.c.created_at)).where(table.c.status.in_(PENDING_STATUSES))
    ).scalar_one()
    age_seconds = 0.0
    if oldest_pending is not None:
        if oldest_pending.tzinfo is None:
            oldest_pending = oldest_pending.replace(tzinfo=timezone.utc)
        age_seconds = max(0.0, (datetime.now(timezone.utc) - oldest_pending).total_seconds())
    outbox_pending_total.labels(service=service_name).set(float(pending_count))
    outbox_oldest_pending_age_seconds.labels(service=service_name).set(age_seconds)


class OutboxPublisher:
    """Background loop draining one outbox table into Kafka."""

    def __init__(self, session_factory, outbox_model, service_name: str, kafka: KafkaBus | None = None) -> None:
        self.session_factory = session_factory
        self.outbox_model = outbox_model
        self.service_name = service_name
        self.kafka = kafka or KafkaBus()

    def _finish(self, event_id: str, status: str) -> None:
        with self.session_factory() as db:
            set_outbox_status(db, self.outbox_model, event_id, status)
            update_outbox_backlog_metrics(db, self.outbox_model, self.service_name)
            db.commit()

    async def publish_once(self, limit: int = 100) -> int:
        """Claim and publish one batch; returns how many rows were delivered."""

        with self.session_factory() as db:
            rows = claim_outbox_batch(db, self.outbox_model, limit=limit)
            update_outbox_backlog_metrics(db, self.outbox_model, self.service_name)
            db.commit()
        delivered = 0
        for row in rows:
            try:
                await self.kafka.publish(row["topic"], EventEnvelope(**row["payload"]))
            except Exception as exc:
                logger.exception("outbox publish failed event_id=%s error=%s", row["id"], exc)
                self._finish(row["id"], "PENDING")
                continue
            self._finish(row["id"], "SENT")
            delivered += 1
        return delivered

    async def run_forever(self, idle_seconds: float = 0.5) -> None:
        while True:
            try:
                await self.publish_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("outbox_loop_error service=%s error=%s", self.service_name, exc)
            await asyncio.sleep(idle_seconds)

    async def close(self) -> None:
        await self.kafka.close()

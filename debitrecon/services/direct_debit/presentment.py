"""Outbound presentment: select due attempts, persist the batch, ship the file.

Database work happens in bounded transactions; building the file and uploading
it happen outside any transaction. A failed build or upload flips the batch to
FAILED and returns every claimed attempt to PENDING so the next run retries it.
"""

from datetime import date

from sqlalchemy import select, update

from debitrecon.common.db import bounded_transaction
from debitrecon.common.logging import bound_batch, logger
from debitrecon.common.metrics import presentment_batches_total, presentment_build_seconds, presentment_rows_total
from debitrecon.common.state_machine import validate_attempt_transition
from debitrecon.services.direct_debit.adapters.base import (
    DirectDebitAdapter,
    PresentmentMeta,
    PresentmentRow,
    total_amount,
)
from debitrecon.services.direct_debit.dates import business_day_end_utc
from debitrecon.services.direct_debit.events import PD_BATCH_OUTBOUND_CREATED, EventLog, log_for_agencies
from debitrecon.services.direct_debit.hashing import (
    hash_reference_fallback,
    quantize_ars,
    reference_or_fallback,
    sha256_hex,
)
from debitrecon.services.direct_debit.models import (
    Charge,
    CollectionAttempt,
    FileBatch,
    FileBatchItem,
    Mandate,
    PaymentMethod,
)
from debitrecon.services.direct_debit.schemas import (
    BatchSummary,
    OutboundBatchMeta,
    OutboundCreatedPayload,
    PresentmentResult,
)
from debitrecon.services.direct_debit.storage import BatchStorage, build_storage_key


OUTBOUND_FILE_TYPE = "PD_PRESENTMENT"
# Line 1 of every presentment file is its header.
FIRST_DATA_LINE = 2


class PresentmentBuilder:
    """Builds one outbound batch per call; repeated calls never deduplicate."""

    def __init__(
        self,
        session_factory,
        adapter: DirectDebitAdapter,
        storage: BatchStorage,
        event_log: EventLog,
        channel: str,
        require_active_mandate: bool,
        selection_limit: int = 5000,
        service_name: str = "direct-debit",
    ) -> None:
        self.session_factory = session_factory
        self.adapter = adapter
        self.storage = storage
        self.event_log = event_log
        self.channel = channel
        self.require_active_mandate = require_active_mandate
        self.selection_limit = selection_limit
        self.service_name = service_name

    def _select_rows(self, db, business_date: date) -> list[PresentmentRow]:
        """Due PENDING attempts in (scheduled_for, id) order, locked for this batch."""

        stmt = (
            select(CollectionAttempt, Charge, PaymentMethod, Mandate)
            .join(Charge, Charge.id == CollectionAttempt.charge_id)
            .outerjoin(PaymentMethod, PaymentMethod.id == CollectionAttempt.payment_method_id)
            .outerjoin(Mandate, Mandate.payment_method_id == PaymentMethod.id)
            .where(
                CollectionAttempt.status == "PENDING",
                CollectionAttempt.channel == self.channel,
                CollectionAttempt.scheduled_for < business_day_end_utc(business_date),
                Charge.status != "PAID",
            )
            .order_by(CollectionAttempt.scheduled_for, CollectionAttempt.id)
            .limit(self.selection_limit)
            .with_for_update(of=CollectionAttempt, skip_locked=True)
        )
        if self.require_active_mandate:
            stmt = stmt.where(Mandate.status == "ACTIVE")

        rows = []
        for attempt, charge, method, mandate in db.execute(stmt).all():
            rows.append(
                PresentmentRow(
                    attempt_id=attempt.id,
                    charge_id=charge.id,
                    agency_id=charge.agency_id,
                    external_reference=reference_or_fallback(attempt.external_reference, f"AT-{attempt.id}"),
                    amount_ars=quantize_ars(charge.amount_ars_due),
                    scheduled_for=attempt.scheduled_for,
                    holder_name=method.holder_name if method else None,
                    holder_tax_id=method.holder_tax_id if method else None,
                    cbu_last4=mandate.cbu_last4 if mandate else None,
                )
            )
        return rows

    def _fits_layout(self, row: PresentmentRow) -> bool:
        """Attempts whose reference the adapter cannot encode stay PENDING and out of the file."""

        limit = self.adapter.max_reference_length
        if limit is None or len(row.external_reference) <= limit:
            return True
        logger.warning(
            "presentment_reference_too_long attempt_id=%s reference=%s max_length=%s adapter=%s",
            row.attempt_id,
            row.external_reference,
            limit,
            self.adapter.name,
        )
        return False

    def _claim_attempt(self, db, row: PresentmentRow) -> bool:
        """PENDING -> PROCESSING guarded on the current status.

        A concurrent build that already flipped the attempt wins; the row is
        then left out of this batch.
        """

        validate_attempt_transition("PENDING", "PROCESSING")
        result = db.execute(
            update(CollectionAttempt)
            .where(CollectionAttempt.id == row.attempt_id, CollectionAttempt.status == "PENDING")
            .values(status="PROCESSING", external_reference=row.external_reference)
        )
        return result.rowcount == 1

    def _create_batch(self, business_date: date, actor_user_id: int | None) -> tuple[FileBatch, list[PresentmentRow]]:
        with bounded_transaction(self.session_factory) as db:
            candidates = [row for row in self._select_rows(db, business_date) if self._fits_layout(row)]
            claimed = [row for row in candidates if self._claim_attempt(db, row)]
            total = total_amount(claimed)

            batch = FileBatch(
                direction="OUTBOUND",
                channel=self.channel,
                file_type=OUTBOUND_FILE_TYPE,
                adapter=self.adapter.name,
                business_date=business_date,
                status="CREATING" if claimed else "EMPTY",
                total_rows=len(claimed),
                total_amount_ars=quantize_ars(total) if claimed else None,
                meta=OutboundBatchMeta(require_active_mandate=self.require_active_mandate).model_dump(mode="json"),
                created_by=actor_user_id,
            )
            db.add(batch)
            db.flush()

            for line_no, row in enumerate(claimed, start=FIRST_DATA_LINE):
                db.add(
                    FileBatchItem(
                        batch_id=batch.id,
                        attempt_id=row.attempt_id,
                        charge_id=row.charge_id,
                        line_no=line_no,
                        external_reference=row.external_reference,
                        raw_hash=hash_reference_fallback(row.external_reference),
                        amount_ars=row.amount_ars,
                        status="PENDING",
                        row_payload=row.model_dump(mode="json"),
                    )
                )

            charge_ids = sorted({row.charge_id for row in claimed})
            if charge_ids:
                db.execute(
                    update(Charge)
                    .where(Charge.id.in_(charge_ids), Charge.status.in_(("READY", "PENDING")))
                    .values(status="PROCESSING")
                )
        return batch, claimed

    def _mark_failed(self, batch_id: int, rows: list[PresentmentRow], error: Exception) -> None:
        attempt_ids = [row.attempt_id for row in rows]
        with bounded_transaction(self.session_factory) as db:
            batch = db.get(FileBatch, batch_id)
            meta = OutboundBatchMeta.model_validate(batch.meta or {"require_active_mandate": self.require_active_mandate})
            meta.error = str(error) or error.__class__.__name__
            batch.status = "FAILED"
            batch.meta = meta.model_dump(mode="json")
            if attempt_ids:
                validate_attempt_transition("PROCESSING", "PENDING")
                db.execute(
                    update(CollectionAttempt)
                    .where(CollectionAttempt.id.in_(attempt_ids), CollectionAttempt.status == "PROCESSING")
                    .values(status="PENDING")
                )
        presentment_batches_total.labels(service=self.service_name, status="FAILED").inc()

    def _ship(
        self, batch: FileBatch, rows: list[PresentmentRow], actor_user_id: int | None
    ) -> tuple[str, str, str]:
        """Build, hash, upload and mark READY; returns (file name, key, sha256)."""

        with presentment_build_seconds.labels(service=self.service_name, adapter=self.adapter.name).time():
            built = self.adapter.build_presentment(batch.business_date, rows, PresentmentMeta(batch_id=batch.id))
            digest = sha256_hex(built.data)
            storage_key = build_storage_key("OUTBOUND", batch.id, built.file_name, batch.business_date)
            self.storage.upload(storage_key, built.data, self.adapter.content_type)

        with bounded_transaction(self.session_factory) as db:
            stored = db.get(FileBatch, batch.id)
            meta = OutboundBatchMeta.model_validate(stored.meta)
            meta.adapter_rows = built.meta.rows
            stored.status = "READY"
            stored.storage_key = storage_key
            stored.sha256 = digest
            stored.original_file_name = built.file_name
            stored.meta = meta.model_dump(mode="json")
            log_for_agencies(
                self.event_log,
                db,
                (row.agency_id for row in rows),
                PD_BATCH_OUTBOUND_CREATED,
                OutboundCreatedPayload(
                    batch_id=batch.id,
                    business_date=batch.business_date,
                    total_rows=len(rows),
                    total_amount_ars=built.meta.total_amount_ars,
                    adapter=self.adapter.name,
                ),
                actor_user_id,
            )
        return built.file_name, storage_key, digest

    def create_presentment_batch(self, business_date: date, actor_user_id: int | None = None) -> PresentmentResult:
        """Create, build and upload the presentment batch for one business day."""

        batch, rows = self._create_batch(business_date, actor_user_id)
        with bound_batch(batch.id):
            summary = BatchSummary(
                id_batch=batch.id,
                direction="OUTBOUND",
                business_date=business_date,
                status=batch.status,
                total_rows=batch.total_rows,
                total_amount_ars=batch.total_amount_ars,
                storage_key=None,
                sha256=None,
            )
            if not rows:
                logger.info("presentment_empty business_date=%s", business_date)
                presentment_batches_total.labels(service=self.service_name, status="EMPTY").inc()
                return PresentmentResult(batch=summary, download_file_name=None)

            try:
                file_name, storage_key, digest = self._ship(batch, rows, actor_user_id)
            except Exception as exc:
                logger.exception("presentment_failed batch_id=%s rows=%s error=%s", batch.id, len(rows), exc)
                self._mark_failed(batch.id, rows, exc)
                raise

            presentment_batches_total.labels(service=self.service_name, status="READY").inc()
            presentment_rows_total.labels(service=self.service_name).inc(len(rows))
            logger.info(
                "presentment_created batch_id=%s business_date=%s rows=%s total_amount_ars=%s adapter=%s",
                batch.id,
                business_date,
                len(rows),
                batch.total_amount_ars,
                self.adapter.name,
            )
            return PresentmentResult(
                batch=summary.model_copy(update={"status": "READY", "storage_key": storage_key, "sha256": digest}),
                download_file_name=file_name,
            )

"""Bank response import: match rows to presented attempts and settle them.

Every response row is applied in its own bounded transaction, in file order,
so one bad row never blocks or rolls back its neighbours. Byte-identical
re-uploads against the same outbound batch return the earlier result. Fiscal
issuance runs after all row transactions have committed and can never undo a
payment.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from debitrecon.common.db import bounded_transaction
from debitrecon.common.logging import bound_batch, logger
from debitrecon.common.metrics import duplicate_imports_skipped_total, fiscal_issuance_total, response_rows_total
from debitrecon.common.state_machine import (
    ATTEMPT_OPEN_STATES,
    ATTEMPT_TERMINAL_STATES,
    validate_attempt_transition,
    validate_charge_transition,
)
from debitrecon.services.direct_debit.adapters.base import DirectDebitAdapter, ParsedRecord
from debitrecon.services.direct_debit.dates import today_business_date
from debitrecon.services.direct_debit.errors import BatchNotFoundError, StaleAttemptError
from debitrecon.services.direct_debit.events import (
    ATTEMPT_MARKED_PAID,
    ATTEMPT_MARKED_REJECTED,
    PD_BATCH_INBOUND_IMPORTED,
    EventLog,
    log_for_agencies,
)
from debitrecon.services.direct_debit.fiscal import FiscalIssuer
from debitrecon.services.direct_debit.hashing import hash_reference_fallback, sha256_hex
from debitrecon.services.direct_debit.models import (
    BillingCycle,
    Charge,
    CollectionAttempt,
    FileBatch,
    FileBatchItem,
)
from debitrecon.services.direct_debit.schemas import (
    AttemptPaidPayload,
    AttemptRejectedPayload,
    ImportResult,
    ImportSummary,
    InboundBatchMeta,
    InboundImportedPayload,
    UploadedFile,
)
from debitrecon.services.direct_debit.storage import BatchStorage, ObjectStorageError, build_storage_key


INBOUND_FILE_TYPE = "PD_RESPONSE"


@dataclass(frozen=True)
class PresentedItem:
    """Detached snapshot of one outbound item used for matching."""

    item_id: int
    attempt_id: int | None
    charge_id: int | None
    external_reference: str | None
    raw_hash: str | None


class OutboundIndex:
    """Lookup of outbound items by reference, then raw hash, then reference hash."""

    def __init__(self, items: list[PresentedItem]) -> None:
        self.by_reference: dict[str, PresentedItem] = {}
        self.by_raw_hash: dict[str, PresentedItem] = {}
        for item in items:
            if item.external_reference:
                self.by_reference[item.external_reference] = item
            if item.raw_hash:
                self.by_raw_hash[item.raw_hash] = item

    def match(self, record: ParsedRecord) -> PresentedItem | None:
        if record.external_reference and record.external_reference in self.by_reference:
            return self.by_reference[record.external_reference]
        if record.raw_hash in self.by_raw_hash:
            return self.by_raw_hash[record.raw_hash]
        if record.external_reference:
            return self.by_raw_hash.get(hash_reference_fallback(record.external_reference))
        return None


@dataclass
class RowOutcome:
    status: str
    agency_id: int | None = None
    charge_id: int | None = None
    newly_paid: bool = False


@dataclass
class ImportAccumulator:
    """Counters and side-effect queues threaded through one import."""

    matched_rows: int = 0
    paid: int = 0
    rejected: int = 0
    error_rows: int = 0
    paid_charge_ids: list[int] = field(default_factory=list)
    touched_agency_ids: list[int] = field(default_factory=list)
    seen_attempt_ids: set[int] = field(default_factory=set)

    def record(self, outcome: RowOutcome) -> None:
        if outcome.status == "PAID":
            self.paid += 1
        elif outcome.status == "REJECTED":
            self.rejected += 1
        else:
            self.error_rows += 1
        if outcome.agency_id is not None and outcome.agency_id not in self.touched_agency_ids:
            self.touched_agency_ids.append(outcome.agency_id)
        if outcome.newly_paid and outcome.charge_id not in self.paid_charge_ids:
            self.paid_charge_ids.append(outcome.charge_id)

    def summary(self, fiscal_issued: int = 0, fiscal_failed: int = 0) -> ImportSummary:
        return ImportSummary(
            matched_rows=self.matched_rows,
            error_rows=self.error_rows,
            rejected=self.rejected,
            paid=self.paid,
            fiscal_issued=fiscal_issued,
            fiscal_failed=fiscal_failed,
        )


@dataclass(frozen=True)
class ImportContext:
    outbound_batch_id: int
    inbound_batch_id: int
    actor_user_id: int | None


def _summary_of(batch: FileBatch) -> ImportSummary:
    meta = InboundBatchMeta.model_validate(batch.meta or {})
    if meta.summary is not None:
        return meta.summary
    return ImportSummary(
        matched_rows=batch.total_paid_rows + batch.total_rejected_rows,
        error_rows=batch.total_error_rows,
        rejected=batch.total_rejected_rows,
        paid=batch.total_paid_rows,
    )


class ResponseImporter:
    """Applies one bank response file to the batch it answers."""

    def __init__(
        self,
        session_factory,
        adapter: DirectDebitAdapter,
        storage: BatchStorage,
        event_log: EventLog,
        fiscal_issuer: FiscalIssuer,
        channel: str,
        service_name: str = "direct-debit",
    ) -> None:
        self.session_factory = session_factory
        self.adapter = adapter
        self.storage = storage
        self.event_log = event_log
        self.fiscal_issuer = fiscal_issuer
        self.channel = channel
        self.service_name = service_name

    def _load_outbound(self, outbound_batch_id: int) -> tuple[FileBatch, list[PresentedItem]]:
        with self.session_factory() as db:
            outbound = db.get(FileBatch, outbound_batch_id)
            if outbound is None or outbound.direction != "OUTBOUND":
                raise BatchNotFoundError(f"outbound batch {outbound_batch_id} not found")
            items = db.execute(
                select(FileBatchItem).where(FileBatchItem.batch_id == outbound_batch_id).order_by(FileBatchItem.line_no)
            ).scalars().all()
            return outbound, [
                PresentedItem(
                    item_id=item.id,
                    attempt_id=item.attempt_id,
                    charge_id=item.charge_id,
                    external_reference=item.external_reference,
                    raw_hash=item.raw_hash,
                )
                for item in items
            ]

    def _find_prior_import(self, outbound_batch_id: int, digest: str) -> ImportResult | None:
        with self.session_factory() as db:
            prior = db.execute(
                select(FileBatch).where(
                    FileBatch.direction == "INBOUND",
                    FileBatch.parent_batch_id == outbound_batch_id,
                    FileBatch.sha256 == digest,
                    FileBatch.status != "FAILED",
                )
            ).scalar_one_or_none()
            if prior is None:
                return None
            return ImportResult(inbound_batch_id=prior.id, summary=_summary_of(prior))

    def _create_inbound(
        self, outbound: FileBatch, uploaded: UploadedFile, digest: str, total_rows: int, actor_user_id: int | None
    ) -> FileBatch:
        with bounded_transaction(self.session_factory) as db:
            inbound = FileBatch(
                parent_batch_id=outbound.id,
                direction="INBOUND",
                channel=self.channel,
                file_type=INBOUND_FILE_TYPE,
                adapter=self.adapter.name,
                business_date=today_business_date(),
                status="PROCESSING",
                total_rows=total_rows,
                sha256=digest,
                original_file_name=uploaded.file_name,
                meta=InboundBatchMeta().model_dump(mode="json"),
                created_by=actor_user_id,
            )
            db.add(inbound)
            db.flush()
        return inbound

    def _store_raw_file(self, inbound: FileBatch, uploaded: UploadedFile) -> str:
        storage_key = build_storage_key("INBOUND", inbound.id, uploaded.file_name, inbound.business_date)
        try:
            self.storage.upload(storage_key, uploaded.data, uploaded.content_type or self.adapter.content_type)
        except ObjectStorageError as exc:
            logger.exception("response_upload_failed inbound_batch_id=%s error=%s", inbound.id, exc)
            with bounded_transaction(self.session_factory) as db:
                failed = db.get(FileBatch, inbound.id)
                failed.status = "FAILED"
                # Free the digest so the same bytes can be imported again.
                failed.sha256 = None
                failed.meta = InboundBatchMeta(error=str(exc)).model_dump(mode="json")
            raise
        return storage_key

    def _item_from_record(
        self,
        batch_id: int,
        record: ParsedRecord,
        status: str,
        attempt_id: int | None = None,
        charge_id: int | None = None,
        message: str | None = None,
        amount=None,
    ) -> FileBatchItem:
        return FileBatchItem(
            batch_id=batch_id,
            attempt_id=attempt_id,
            charge_id=charge_id,
            line_no=record.line_no,
            external_reference=record.external_reference,
            raw_hash=record.raw_hash,
            amount_ars=record.amount_ars if amount is None else amount,
            status=status,
            response_code=record.rejection_code,
            response_message=message if message is not None else record.rejection_reason,
            paid_reference=record.paid_reference,
            row_payload=dict(record.raw),
            processed_at=datetime.now(timezone.utc),
        )

    def _write_error_item(
        self,
        ctx: ImportContext,
        record: ParsedRecord,
        message: str,
        attempt_id: int | None = None,
        charge_id: int | None = None,
    ) -> None:
        with bounded_transaction(self.session_factory) as db:
            db.add(
                self._item_from_record(
                    ctx.inbound_batch_id, record, "ERROR", attempt_id=attempt_id, charge_id=charge_id, message=message
                )
            )

    def _transition_attempt(self, db, attempt: CollectionAttempt, new_status: str, **values) -> None:
        """Status change guarded on the status we just read."""

        validate_attempt_transition(attempt.status, new_status)
        result = db.execute(
            update(CollectionAttempt)
            .where(CollectionAttempt.id == attempt.id, CollectionAttempt.status == attempt.status)
            .values(status=new_status, **values)
        )
        if result.rowcount != 1:
            raise StaleAttemptError(f"attempt {attempt.id} changed status concurrently (expected {attempt.status})")

    def _apply_paid(
        self, db, ctx: ImportContext, record: ParsedRecord, item: PresentedItem, attempt: CollectionAttempt, charge: Charge
    ) -> RowOutcome:
        now = datetime.now(timezone.utc)
        paid_amount = record.amount_ars if record.amount_ars is not None else charge.amount_ars_due

        attempt_transitioned = False
        if attempt.status != "PAID":
            self._transition_attempt(
                db,
                attempt,
                "PAID",
                processed_at=now,
                paid_reference=record.paid_reference,
                rejection_code=None,
                rejection_reason=None,
            )
            attempt_transitioned = True

        newly_paid = False
        if charge.status != "PAID":
            validate_charge_transition(charge.status, "PAID")
            charge.status = "PAID"
            charge.amount_ars_paid = paid_amount
            charge.paid_currency = "ARS"
            charge.paid_at = now
            charge.paid_reference = record.paid_reference
            charge.reconciliation_status = "MATCHED"
            newly_paid = True

        canceled = db.execute(
            update(CollectionAttempt)
            .where(
                CollectionAttempt.charge_id == charge.id,
                CollectionAttempt.attempt_no > attempt.attempt_no,
                CollectionAttempt.status.in_(sorted(ATTEMPT_OPEN_STATES)),
            )
            .values(
                status="CANCELED",
                processed_at=now,
                notes=f"Canceled: charge collected by attempt #{attempt.attempt_no}",
            )
        ).rowcount
        if canceled:
            logger.info("sibling_attempts_canceled charge_id=%s count=%s", charge.id, canceled)

        if charge.cycle_id is not None:
            cycle = db.get(BillingCycle, charge.cycle_id)
            if cycle is not None and cycle.status != "PAID":
                cycle.status = "PAID"

        db.execute(
            update(FileBatchItem)
            .where(FileBatchItem.id == item.item_id, FileBatchItem.status == "PENDING")
            .values(
                status="PAID",
                response_code=record.rejection_code,
                response_message=record.rejection_reason,
                paid_reference=record.paid_reference,
                processed_at=now,
            )
        )
        db.add(
            self._item_from_record(
                ctx.inbound_batch_id, record, "PAID", attempt_id=attempt.id, charge_id=charge.id, amount=paid_amount
            )
        )
        if attempt_transitioned:
            self.event_log.log_event(
                db,
                charge.agency_id,
                ATTEMPT_MARKED_PAID,
                AttemptPaidPayload(
                    outbound_batch_id=ctx.outbound_batch_id,
                    inbound_batch_id=ctx.inbound_batch_id,
                    attempt_id=attempt.id,
                    charge_id=charge.id,
                    paid_reference=record.paid_reference,
                    amount_ars=paid_amount,
                ),
                ctx.actor_user_id,
            )
        return RowOutcome("PAID", agency_id=charge.agency_id, charge_id=charge.id, newly_paid=newly_paid)

    def _apply_rejected(
        self, db, ctx: ImportContext, record: ParsedRecord, item: PresentedItem, attempt: CollectionAttempt, charge: Charge
    ) -> RowOutcome:
        now = datetime.now(timezone.utc)

        attempt_transitioned = False
        if attempt.status not in ATTEMPT_TERMINAL_STATES:
            self._transition_attempt(
                db,
                attempt,
                "REJECTED",
                processed_at=now,
                rejection_code=record.rejection_code,
                rejection_reason=record.rejection_reason,
            )
            attempt_transitioned = True

        if charge.status != "PAID":
            if charge.status != "PAST_DUE":
                validate_charge_transition(charge.status, "PAST_DUE")
                charge.status = "PAST_DUE"
            charge.reconciliation_status = "UNMATCHED"

        db.execute(
            update(FileBatchItem)
            .where(FileBatchItem.id == item.item_id, FileBatchItem.status == "PENDING")
            .values(
                status="REJECTED",
                response_code=record.rejection_code,
                response_message=record.rejection_reason,
                processed_at=now,
            )
        )
        db.add(self._item_from_record(ctx.inbound_batch_id, record, "REJECTED", attempt_id=attempt.id, charge_id=charge.id))
        if attempt_transitioned:
            self.event_log.log_event(
                db,
                charge.agency_id,
                ATTEMPT_MARKED_REJECTED,
                AttemptRejectedPayload(
                    outbound_batch_id=ctx.outbound_batch_id,
                    inbound_batch_id=ctx.inbound_batch_id,
                    attempt_id=attempt.id,
                    charge_id=charge.id,
                    rejection_code=record.rejection_code,
                    rejection_reason=record.rejection_reason,
                ),
                ctx.actor_user_id,
            )
        return RowOutcome("REJECTED", agency_id=charge.agency_id, charge_id=charge.id)

    def _apply_matched(self, db, ctx: ImportContext, record: ParsedRecord, item: PresentedItem) -> RowOutcome:
        """Re-read attempt and charge under lock, then settle the row."""

        attempt = db.execute(
            select(CollectionAttempt).where(CollectionAttempt.id == item.attempt_id).with_for_update()
        ).scalar_one_or_none()
        charge = db.execute(select(Charge).where(Charge.id == item.charge_id).with_for_update()).scalar_one_or_none()

        if attempt is None or charge is None:
            logger.warning(
                "response_row_orphaned line_no=%s attempt_id=%s charge_id=%s",
                record.line_no,
                item.attempt_id,
                item.charge_id,
            )
            db.add(
                self._item_from_record(
                    ctx.inbound_batch_id,
                    record,
                    "ERROR",
                    attempt_id=attempt.id if attempt else None,
                    charge_id=charge.id if charge else None,
                    message="attempt or charge not found",
                )
            )
            return RowOutcome("ERROR")

        if record.result == "PAID":
            return self._apply_paid(db, ctx, record, item, attempt, charge)
        if record.result == "REJECTED":
            return self._apply_rejected(db, ctx, record, item, attempt, charge)

        db.add(
            self._item_from_record(
                ctx.inbound_batch_id,
                record,
                "ERROR",
                attempt_id=attempt.id,
                charge_id=charge.id,
                message=record.rejection_reason or "invalid result",
            )
        )
        return RowOutcome("ERROR", agency_id=charge.agency_id, charge_id=charge.id)

    def _apply_record(self, ctx: ImportContext, index: OutboundIndex, record: ParsedRecord, acc: ImportAccumulator) -> None:
        item = index.match(record)
        if item is None or item.attempt_id is None or item.charge_id is None:
            self._write_error_item(ctx, record, record.rejection_reason or "unmatched row")
            acc.record(RowOutcome("ERROR"))
            return
        if item.attempt_id in acc.seen_attempt_ids:
            self._write_error_item(ctx, record, f"duplicate row for attempt {item.attempt_id}")
            acc.record(RowOutcome("ERROR"))
            return
        acc.seen_attempt_ids.add(item.attempt_id)
        acc.matched_rows += 1

        try:
            with bounded_transaction(self.session_factory) as db:
                outcome = self._apply_matched(db, ctx, record, item)
        except (SQLAlchemyError, ValueError, StaleAttemptError) as exc:
            logger.warning(
                "response_row_failed line_no=%s attempt_id=%s error=%s", record.line_no, item.attempt_id, exc
            )
            self._write_error_item(ctx, record, str(exc), attempt_id=item.attempt_id, charge_id=item.charge_id)
            outcome = RowOutcome("ERROR")
        acc.record(outcome)

    def _issue_fiscal_documents(self, acc: ImportAccumulator, actor_user_id: int | None) -> tuple[int, int]:
        """Best-effort post-commit hook; failures are counted, never raised."""

        issued = failed = 0
        for charge_id in acc.paid_charge_ids:
            try:
                ok = self.fiscal_issuer.issue_for_charge(charge_id, actor_user_id).ok
            except Exception as exc:
                logger.warning("fiscal_issue_failed charge_id=%s error=%s", charge_id, exc, exc_info=True)
                ok = False
            if ok:
                issued += 1
            else:
                failed += 1
            fiscal_issuance_total.labels(service=self.service_name, outcome="issued" if ok else "failed").inc()
        return issued, failed

    def _finalize(
        self,
        ctx: ImportContext,
        storage_key: str,
        acc: ImportAccumulator,
        summary: ImportSummary,
        business_date,
    ) -> None:
        with bounded_transaction(self.session_factory) as db:
            inbound = db.get(FileBatch, ctx.inbound_batch_id)
            inbound.status = "PROCESSED"
            inbound.storage_key = storage_key
            inbound.total_paid_rows = acc.paid
            inbound.total_rejected_rows = acc.rejected
            inbound.total_error_rows = acc.error_rows
            inbound.meta = InboundBatchMeta(summary=summary).model_dump(mode="json")
            if acc.paid > 0:
                outbound = db.get(FileBatch, ctx.outbound_batch_id)
                outbound.status = "RECONCILED"
            log_for_agencies(
                self.event_log,
                db,
                acc.touched_agency_ids,
                PD_BATCH_INBOUND_IMPORTED,
                InboundImportedPayload(
                    outbound_batch_id=ctx.outbound_batch_id,
                    inbound_batch_id=ctx.inbound_batch_id,
                    business_date=business_date,
                    adapter=self.adapter.name,
                    matched_rows=summary.matched_rows,
                    paid_rows=summary.paid,
                    rejected_rows=summary.rejected,
                    error_rows=summary.error_rows,
                    fiscal_issued=summary.fiscal_issued,
                    fiscal_failed=summary.fiscal_failed,
                ),
                ctx.actor_user_id,
            )

    def import_response_batch(
        self, outbound_batch_id: int, uploaded: UploadedFile, actor_user_id: int | None = None
    ) -> ImportResult:
        """Parse, match and apply a response file; idempotent for identical bytes."""

        outbound, items = self._load_outbound(outbound_batch_id)
        records = self.adapter.parse_response(uploaded.data)
        digest = sha256_hex(uploaded.data)

        prior = self._find_prior_import(outbound.id, digest)
        if prior is not None:
            logger.info(
                "duplicate_import_skipped outbound_batch_id=%s inbound_batch_id=%s", outbound.id, prior.inbound_batch_id
            )
            duplicate_imports_skipped_total.labels(service=self.service_name).inc()
            return prior

        try:
            inbound = self._create_inbound(outbound, uploaded, digest, len(records), actor_user_id)
        except IntegrityError:
            # A concurrent import of the same bytes committed first.
            prior = self._find_prior_import(outbound.id, digest)
            if prior is None:
                raise
            duplicate_imports_skipped_total.labels(service=self.service_name).inc()
            return prior

        with bound_batch(inbound.id):
            storage_key = self._store_raw_file(inbound, uploaded)
            ctx = ImportContext(outbound_batch_id=outbound.id, inbound_batch_id=inbound.id, actor_user_id=actor_user_id)
            index = OutboundIndex(items)
            acc = ImportAccumulator()
            for record in records:
                self._apply_record(ctx, index, record, acc)

            fiscal_issued, fiscal_failed = self._issue_fiscal_documents(acc, actor_user_id)
            summary = acc.summary(fiscal_issued=fiscal_issued, fiscal_failed=fiscal_failed)
            self._finalize(ctx, storage_key, acc, summary, inbound.business_date)

            response_rows_total.labels(service=self.service_name, status="PAID").inc(acc.paid)
            response_rows_total.labels(service=self.service_name, status="REJECTED").inc(acc.rejected)
            response_rows_total.labels(service=self.service_name, status="ERROR").inc(acc.error_rows)
            logger.info(
                "response_imported outbound_batch_id=%s rows=%s matched=%s paid=%s rejected=%s errors=%s "
                "fiscal_issued=%s fiscal_failed=%s",
                outbound.id,
                len(records),
                summary.matched_rows,
                summary.paid,
                summary.rejected,
                summary.error_rows,
                summary.fiscal_issued,
                summary.fiscal_failed,
            )
            return ImportResult(inbound_batch_id=inbound.id, summary=summary)

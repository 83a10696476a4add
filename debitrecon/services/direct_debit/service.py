"""Direct-debit engine facade used by the HTTP layer and job runners.

Wires the configured adapter, storage backend, fiscal issuer and outbox event
log into the presentment builder and the response importer, and serves the
batch history queries.
"""

from datetime import date, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from debitrecon.common.config import settings
from debitrecon.common.events import KafkaBus
from debitrecon.common.outbox import OutboxPublisher
from debitrecon.common.tracing import tracer
from debitrecon.services.direct_debit.adapters.base import DirectDebitAdapter
from debitrecon.services.direct_debit.adapters.registry import UnknownAdapterError, resolve_adapter
from debitrecon.services.direct_debit.dates import today_business_date
from debitrecon.services.direct_debit.errors import BatchFileMissingError, BatchNotFoundError
from debitrecon.services.direct_debit.events import EventLog, OutboxEventLog
from debitrecon.services.direct_debit.fiscal import FiscalIssuer, resolve_fiscal_issuer
from debitrecon.services.direct_debit.models import FileBatch, FileBatchItem, OutboxEvent
from debitrecon.services.direct_debit.presentment import OUTBOUND_FILE_TYPE, PresentmentBuilder
from debitrecon.services.direct_debit.reconciliation import INBOUND_FILE_TYPE, ResponseImporter
from debitrecon.services.direct_debit.schemas import (
    BatchFile,
    BatchListItem,
    ImportResult,
    ParentBatchRef,
    PresentmentResult,
    UploadedFile,
)
from debitrecon.services.direct_debit.storage import BatchStorage, resolve_batch_storage


DEFAULT_LIST_RANGE_DAYS = 60


class DirectDebitService:
    """Presentment, response import and batch history for one channel."""

    def __init__(
        self,
        session_factory,
        adapter: DirectDebitAdapter | None = None,
        storage: BatchStorage | None = None,
        fiscal_issuer: FiscalIssuer | None = None,
        event_log: EventLog | None = None,
        kafka: KafkaBus | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.adapter = adapter or resolve_adapter(settings.pd_adapter)
        self.storage = storage or resolve_batch_storage()
        self.fiscal_issuer = fiscal_issuer or resolve_fiscal_issuer()
        self.event_log = event_log or OutboxEventLog()
        self.channel = settings.pd_channel
        self.builder = PresentmentBuilder(
            session_factory,
            adapter=self.adapter,
            storage=self.storage,
            event_log=self.event_log,
            channel=self.channel,
            require_active_mandate=settings.pd_require_active_mandate,
            selection_limit=settings.pd_selection_limit,
            service_name=settings.service_name,
        )
        self.importer = ResponseImporter(
            session_factory,
            adapter=self.adapter,
            storage=self.storage,
            event_log=self.event_log,
            fiscal_issuer=self.fiscal_issuer,
            channel=self.channel,
            service_name=settings.service_name,
        )
        self.outbox = OutboxPublisher(session_factory, OutboxEvent, settings.service_name, kafka=kafka)

    def create_presentment_batch(
        self, business_date: date | None = None, actor_user_id: int | None = None
    ) -> PresentmentResult:
        business_date = business_date or today_business_date()
        with tracer.start_as_current_span(
            "direct_debit.create_presentment_batch",
            attributes={"business_date": business_date.isoformat(), "adapter": self.adapter.name},
        ) as span:
            result = self.builder.create_presentment_batch(business_date, actor_user_id)
            span.set_attribute("batch_id", result.batch.id_batch)
            span.set_attribute("rows", result.batch.total_rows)
            return result

    def import_response_batch(
        self, outbound_batch_id: int, uploaded: UploadedFile, actor_user_id: int | None = None
    ) -> ImportResult:
        with tracer.start_as_current_span(
            "direct_debit.import_response_batch",
            attributes={"outbound_batch_id": outbound_batch_id, "adapter": self.adapter.name},
        ) as span:
            result = self.importer.import_response_batch(outbound_batch_id, uploaded, actor_user_id)
            span.set_attribute("inbound_batch_id", result.inbound_batch_id)
            span.set_attribute("paid_rows", result.summary.paid)
            return result

    def list_batches(
        self, date_from: date | None = None, date_to: date | None = None
    ) -> tuple[date, date, list[BatchListItem]]:
        """Batches of this channel with business_date in [from, to], newest first."""

        date_to = date_to or today_business_date()
        date_from = date_from or date_to - timedelta(days=DEFAULT_LIST_RANGE_DAYS)
        if date_from > date_to:
            date_from, date_to = date_to, date_from

        item_counts = (
            select(FileBatchItem.batch_id, func.count(FileBatchItem.id).label("items_count"))
            .group_by(FileBatchItem.batch_id)
            .subquery()
        )
        parent = aliased(FileBatch)
        stmt = (
            select(FileBatch, func.coalesce(item_counts.c.items_count, 0), parent)
            .outerjoin(item_counts, item_counts.c.batch_id == FileBatch.id)
            .outerjoin(parent, parent.id == FileBatch.parent_batch_id)
            .where(
                FileBatch.channel == self.channel,
                FileBatch.file_type.in_((OUTBOUND_FILE_TYPE, INBOUND_FILE_TYPE)),
                FileBatch.business_date >= date_from,
                FileBatch.business_date <= date_to,
            )
            .order_by(FileBatch.business_date.desc(), FileBatch.id.desc())
            .limit(settings.pd_list_limit)
        )
        with self.session_factory() as db:
            rows = db.execute(stmt).all()

        items = []
        for batch, items_count, parent_batch in rows:
            items.append(
                BatchListItem(
                    id_batch=batch.id,
                    parent_batch_id=batch.parent_batch_id,
                    direction=batch.direction,
                    channel=batch.channel,
                    file_type=batch.file_type,
                    adapter=batch.adapter,
                    business_date=batch.business_date,
                    status=batch.status,
                    storage_key=batch.storage_key,
                    original_file_name=batch.original_file_name,
                    sha256=batch.sha256,
                    total_rows=batch.total_rows,
                    total_amount_ars=batch.total_amount_ars,
                    total_paid_rows=batch.total_paid_rows,
                    total_rejected_rows=batch.total_rejected_rows,
                    total_error_rows=batch.total_error_rows,
                    created_at=batch.created_at,
                    updated_at=batch.updated_at,
                    items_count=int(items_count),
                    parent_batch=(
                        ParentBatchRef(
                            id_batch=parent_batch.id,
                            direction=parent_batch.direction,
                            business_date=parent_batch.business_date,
                        )
                        if parent_batch is not None
                        else None
                    ),
                )
            )
        return date_from, date_to, items

    def _content_type_for(self, adapter_name: str | None) -> str:
        if not adapter_name or adapter_name == self.adapter.name:
            return self.adapter.content_type
        try:
            return resolve_adapter(adapter_name).content_type
        except UnknownAdapterError:
            return "application/octet-stream"

    def download_batch_file(self, batch_id: int) -> BatchFile:
        """Stored bytes of a batch, exactly as sent or received."""

        with self.session_factory() as db:
            batch = db.get(FileBatch, batch_id)
            if batch is None:
                raise BatchNotFoundError(f"batch {batch_id} not found")
            if not batch.storage_key:
                raise BatchFileMissingError(f"batch {batch_id} has no stored file")
            storage_key = batch.storage_key
            file_name = batch.original_file_name or f"batch-{batch.id}-{batch.direction.lower()}.csv"
            adapter_name = batch.adapter

        data = self.storage.download(storage_key)
        return BatchFile(file_name=file_name, data=data, content_type=self._content_type_for(adapter_name))

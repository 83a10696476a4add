"""Shared fixtures: in-memory database, fake storage, recording fiscal issuer."""

import os

os.environ["POSTGRES_DSN"] = "sqlite://"
os.environ["API_KEY"] = "test-key"
os.environ["OTEL_ENABLED"] = "false"
os.environ["PD_ADAPTER"] = "debug_csv"
os.environ["PD_CHANNEL"] = "OFFICE_BANKING"

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from debitrecon.common.db import Base
from debitrecon.services.direct_debit.adapters.debug_csv import DebugCsvAdapter
from debitrecon.services.direct_debit.events import OutboxEventLog
from debitrecon.services.direct_debit.fiscal import FiscalIssueResult
from debitrecon.services.direct_debit.models import (
    BillingCycle,
    Charge,
    CollectionAttempt,
    Mandate,
    PaymentMethod,
)
from debitrecon.services.direct_debit.presentment import PresentmentBuilder
from debitrecon.services.direct_debit.reconciliation import ResponseImporter
from debitrecon.services.direct_debit.storage import ObjectNotFoundError, ObjectStorageError


CHANNEL = "OFFICE_BANKING"


class MemoryStorage:
    """Dict-backed storage; `fail_uploads` makes every upload raise."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str | None] = {}
        self.fail_uploads = False

    def upload(self, key: str, data: bytes, content_type: str | None) -> None:
        if self.fail_uploads:
            raise ObjectStorageError(f"Failed to upload object {key}")
        self.objects[key] = data
        self.content_types[key] = content_type

    def download(self, key: str) -> bytes:
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        return self.objects[key]


class RecordingFiscalIssuer:
    def __init__(self, fail: bool = False, raise_error: bool = False) -> None:
        self.calls: list[int] = []
        self.fail = fail
        self.raise_error = raise_error

    def issue_for_charge(self, charge_id: int, actor_user_id: int | None) -> FiscalIssueResult:
        self.calls.append(charge_id)
        if self.raise_error:
            raise RuntimeError("fiscal service unavailable")
        if self.fail:
            return FiscalIssueResult(ok=False, status="FAILED", message="rejected by tax authority")
        return FiscalIssueResult(ok=True, status="ISSUED", document_reference=f"DOC-{charge_id}")


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def fiscal():
    return RecordingFiscalIssuer()


@pytest.fixture
def builder(session_factory, storage):
    return PresentmentBuilder(
        session_factory,
        adapter=DebugCsvAdapter(),
        storage=storage,
        event_log=OutboxEventLog(topic="billing.events"),
        channel=CHANNEL,
        require_active_mandate=True,
    )


@pytest.fixture
def importer(session_factory, storage, fiscal):
    return ResponseImporter(
        session_factory,
        adapter=DebugCsvAdapter(),
        storage=storage,
        event_log=OutboxEventLog(topic="billing.events"),
        fiscal_issuer=fiscal,
        channel=CHANNEL,
    )


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def seed_charge(
    db,
    agency_id: int = 10,
    amount: str = "1000.00",
    status: str = "READY",
    mandate_status: str | None = "ACTIVE",
    holder_name: str = "Agencia Sur SRL",
) -> Charge:
    """Charge with a cycle and a direct-debit payment method."""

    cycle = BillingCycle(agency_id=agency_id, status="OPEN")
    method = PaymentMethod(
        agency_id=agency_id,
        method_type="DIRECT_DEBIT_CBU",
        holder_name=holder_name,
        holder_tax_id="30-71234567-9",
        is_default=True,
    )
    db.add_all([cycle, method])
    db.flush()
    if mandate_status is not None:
        db.add(Mandate(payment_method_id=method.id, status=mandate_status, cbu_last4="4321"))
    charge = Charge(
        agency_id=agency_id,
        cycle_id=cycle.id,
        selected_method_id=method.id,
        status=status,
        amount_ars_due=Decimal(amount),
    )
    db.add(charge)
    db.flush()
    return charge


def seed_attempt(
    db,
    charge: Charge,
    attempt_no: int = 1,
    status: str = "PENDING",
    scheduled_for: datetime | None = None,
    external_reference: str | None = None,
    channel: str = CHANNEL,
) -> CollectionAttempt:
    attempt = CollectionAttempt(
        charge_id=charge.id,
        payment_method_id=charge.selected_method_id,
        attempt_no=attempt_no,
        channel=channel,
        status=status,
        scheduled_for=scheduled_for or utc(2025, 1, 8, 12, 0),
        external_reference=external_reference,
    )
    db.add(attempt)
    db.flush()
    return attempt

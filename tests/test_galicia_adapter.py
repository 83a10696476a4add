from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from debitrecon.services.direct_debit.adapters import registry
from debitrecon.services.direct_debit.adapters.base import PresentmentMeta, PresentmentRow
from debitrecon.services.direct_debit.adapters.debug_csv import DebugCsvAdapter
from debitrecon.services.direct_debit.adapters.galicia_pd_v1 import RECORD_WIDTH, GaliciaPdV1Adapter
from debitrecon.services.direct_debit.adapters.registry import (
    UnknownAdapterError,
    available_adapters,
    register_adapter,
    resolve_adapter,
)


def _row(ref="REF123", amount="1000"):
    return PresentmentRow(
        attempt_id=1,
        charge_id=2,
        agency_id=10,
        external_reference=ref,
        amount_ars=Decimal(amount),
        scheduled_for=datetime(2025, 1, 8, 12, 0, tzinfo=timezone.utc),
        holder_name="Agencia Ñandú SRL",
        holder_tax_id="30-71234567-9",
        cbu_last4="4321",
    )


def _response_line(ref, status, cents="", paid_ref="", reason=""):
    return "R" + ref.ljust(22) + status + cents.rjust(15, "0") + paid_ref.ljust(15) + reason


def test_presentment_records_are_fixed_width():
    adapter = GaliciaPdV1Adapter(company_code="1234567890")
    built = adapter.build_presentment(
        date(2025, 1, 8), [_row(), _row("REF124", "2500.50")], PresentmentMeta(batch_id=42)
    )

    text = built.data.decode("latin-1")
    records = text.split("\r\n")
    assert records[-1] == ""
    header, first, _second, trailer = records[:-1]
    assert all(len(record) == RECORD_WIDTH for record in records[:-1])
    assert header.startswith("H1234567890" + "20250108" + "000002" + "000000000350050")
    assert first.startswith("D" + "REF123".ljust(22) + "000000000100000" + "20250108" + "4321" + "30712345679")
    assert first[61:91] == "AGENCIA NANDU SRL".ljust(30)
    assert trailer.startswith("T000002000000000350050")
    assert built.file_name == "PD1234567890_20250108_42.txt"
    assert built.meta.total_amount_ars == Decimal("3500.50")


def test_reference_longer_than_field_is_refused():
    with pytest.raises(ValueError, match="too long"):
        GaliciaPdV1Adapter(company_code="1").build_presentment(
            date(2025, 1, 8), [_row("X" * 23)], PresentmentMeta(batch_id=1)
        )


def test_parse_response_records():
    lines = [
        "H1234567890202501080000020",
        _response_line("REF123", "00", "100000", "BNK-1"),
        _response_line("REF124", "51", "", "", "FONDOS INSUFICIENTES"),
        "Z what is this",
        "RREF",
        "T000002000000000100000",
    ]
    data = ("\r\n".join(lines) + "\r\n").encode("latin-1")

    records = GaliciaPdV1Adapter(company_code="1").parse_response(data)

    assert [r.line_no for r in records] == [2, 3, 4, 5]
    paid, rejected, unknown, truncated = records
    assert paid.result == "PAID"
    assert paid.external_reference == "REF123"
    assert paid.amount_ars == Decimal("1000.00")
    assert paid.paid_reference == "BNK-1"
    assert paid.rejection_code is None
    assert rejected.result == "REJECTED"
    assert rejected.rejection_code == "51"
    assert rejected.rejection_reason == "FONDOS INSUFICIENTES"
    assert unknown.result == "ERROR"
    assert "unknown record type" in unknown.rejection_reason
    assert truncated.result == "ERROR"
    assert truncated.rejection_reason == "truncated record"


def test_non_numeric_status_is_an_error():
    data = _response_line("REF1", "XX").encode("latin-1")
    (record,) = GaliciaPdV1Adapter(company_code="1").parse_response(data)
    assert record.result == "ERROR"
    assert record.rejection_reason.startswith("invalid status code")


def test_registry_resolves_known_adapters_case_insensitively():
    assert isinstance(resolve_adapter(" DEBUG_CSV "), DebugCsvAdapter)
    assert isinstance(resolve_adapter("galicia_pd_v1"), GaliciaPdV1Adapter)
    assert {"debug_csv", "galicia_pd_v1"} <= set(available_adapters())


def test_registry_rejects_unknown_adapter():
    with pytest.raises(UnknownAdapterError, match="available"):
        resolve_adapter("swift_mt940")


def test_register_adapter_decorator():
    @register_adapter("Rehearsal_Fmt")
    class RehearsalAdapter(DebugCsvAdapter):
        name = "rehearsal_fmt"

    try:
        assert isinstance(resolve_adapter("rehearsal_fmt"), RehearsalAdapter)
        with pytest.raises(ValueError, match="already registered"):
            register_adapter("rehearsal_fmt")(RehearsalAdapter)
    finally:
        registry._FACTORIES.pop("rehearsal_fmt", None)

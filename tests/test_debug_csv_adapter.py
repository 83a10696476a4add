from datetime import date, datetime, timezone
from decimal import Decimal

from debitrecon.services.direct_debit.adapters.base import PresentmentMeta, PresentmentRow
from debitrecon.services.direct_debit.adapters.debug_csv import (
    DebugCsvAdapter,
    DebugResponseRecord,
    build_debug_response_csv,
    status_to_result,
)
from debitrecon.services.direct_debit.hashing import hash_reference_fallback


def _row(attempt_id, amount, ref, holder="Agencia Sur SRL"):
    return PresentmentRow(
        attempt_id=attempt_id,
        charge_id=attempt_id + 100,
        agency_id=10,
        external_reference=ref,
        amount_ars=Decimal(amount),
        scheduled_for=datetime(2025, 1, 8, 12, 0, tzinfo=timezone.utc),
        holder_name=holder,
        holder_tax_id="30-71234567-9",
        cbu_last4="4321",
    )


def test_build_presentment_writes_header_and_rows():
    adapter = DebugCsvAdapter()
    built = adapter.build_presentment(
        date(2025, 1, 8),
        [_row(1, "1000", "AT-1"), _row(2, "2500.5", "AT-2")],
        PresentmentMeta(batch_id=5),
    )

    lines = built.data.decode("utf-8").splitlines()
    assert built.file_name == "debug_pd_presentment_2025-01-08.csv"
    assert lines[0] == (
        "external_reference,attempt_id,charge_id,agency_id,scheduled_for,amount_ars,"
        "holder_name,holder_tax_id,cbu_last4"
    )
    assert lines[1] == "AT-1,1,101,10,2025-01-08T12:00:00Z,1000.00,Agencia Sur SRL,30-71234567-9,4321"
    assert lines[2].split(",")[5] == "2500.50"
    assert built.meta.rows == 2
    assert built.meta.total_amount_ars == Decimal("3500.50")


def test_build_presentment_quotes_per_rfc4180():
    built = DebugCsvAdapter().build_presentment(
        date(2025, 1, 8), [_row(1, "10", "AT-1", holder='Viajes "Norte", SA')], PresentmentMeta(batch_id=1)
    )
    assert '"Viajes ""Norte"", SA"' in built.data.decode("utf-8")


def test_build_presentment_is_deterministic():
    adapter = DebugCsvAdapter()
    rows = [_row(1, "10", "AT-1")]
    first = adapter.build_presentment(date(2025, 1, 8), rows, PresentmentMeta(batch_id=1))
    second = adapter.build_presentment(date(2025, 1, 8), rows, PresentmentMeta(batch_id=1))
    assert first.data == second.data


def test_parse_response_maps_results():
    data = (
        "external_reference,result,amount_ars,paid_reference,rejection_code,rejection_reason\n"
        "REF123,PAID,1000.00,BNK-1,,\n"
        "REF124,rechazado,,,R10,Fondos insuficientes\n"
        "REF125,MAYBE,,,,\n"
    ).encode("utf-8")

    records = DebugCsvAdapter().parse_response(data)

    assert [r.result for r in records] == ["PAID", "REJECTED", "ERROR"]
    assert [r.line_no for r in records] == [2, 3, 4]
    assert records[0].amount_ars == Decimal("1000.00")
    assert records[0].paid_reference == "BNK-1"
    assert records[1].rejection_code == "R10"
    assert records[1].rejection_reason == "Fondos insuficientes"
    assert records[0].raw["raw_line"] == "REF123,PAID,1000.00,BNK-1,,"


def test_parse_response_tolerates_bom_blank_lines_and_column_order():
    data = "\ufeffresult,external_reference\n\nPAGADO,REF1\n".encode("utf-8")

    records = DebugCsvAdapter().parse_response(data)

    assert len(records) == 1
    assert records[0].line_no == 3
    assert records[0].external_reference == "REF1"
    assert records[0].result == "PAID"


def test_malformed_lines_become_error_records():
    data = (
        "external_reference,result,amount_ars,paid_reference,rejection_code,rejection_reason\n"
        "REF1,PAID\n"
        "REF2,PAID,12x,,,\n"
        "REF3,PAID,5,,,\n"
    ).encode("utf-8")

    records = DebugCsvAdapter().parse_response(data)

    assert [r.result for r in records] == ["ERROR", "ERROR", "PAID"]
    assert "expected 6 fields" in records[0].rejection_reason
    assert records[1].rejection_reason == "invalid amount: 12x"
    assert records[0].external_reference == "REF1"


def test_empty_file_parses_to_nothing():
    assert DebugCsvAdapter().parse_response(b"") == []


def test_reference_only_row_hashes_like_the_fallback():
    data = b"external_reference\nREF9\n"
    (record,) = DebugCsvAdapter().parse_response(data)
    assert record.raw_hash == hash_reference_fallback("REF9")


def test_status_aliases():
    assert status_to_result(" paid ") == "PAID"
    assert status_to_result("RECHAZADO") == "REJECTED"
    assert status_to_result(None) == "ERROR"


def test_debug_response_builder_parses_back():
    data = build_debug_response_csv(
        [
            DebugResponseRecord(external_reference="REF1", result="PAID", amount_ars=Decimal("10"), paid_reference="P1"),
            DebugResponseRecord(external_reference="REF2", result="REJECTED", rejection_code="R10"),
        ]
    )
    records = DebugCsvAdapter().parse_response(data)
    assert [(r.external_reference, r.result) for r in records] == [("REF1", "PAID"), ("REF2", "REJECTED")]
    assert records[0].amount_ars == Decimal("10.00")


def test_quoted_newlines_stay_inside_one_record():
    data = build_debug_response_csv(
        [
            DebugResponseRecord(
                external_reference="REF1", result="REJECTED", rejection_code="R10", rejection_reason="Fondos\ninsuficientes"
            ),
            DebugResponseRecord(external_reference="REF2", result="PAID", amount_ars=Decimal("5")),
        ]
    )

    records = DebugCsvAdapter().parse_response(data)

    assert [(r.line_no, r.external_reference, r.result) for r in records] == [(2, "REF1", "REJECTED"), (4, "REF2", "PAID")]
    assert records[0].rejection_reason == "Fondos\ninsuficientes"
    assert records[0].raw["raw_line"] == 'REF1,REJECTED,,,R10,"Fondos\ninsuficientes"'


def test_unterminated_quote_is_an_error_record():
    data = (
        "external_reference,result,amount_ars,paid_reference,rejection_code,rejection_reason\n"
        'REF1,PAID,5,,,"never closed\n'
    ).encode("utf-8")

    (record,) = DebugCsvAdapter().parse_response(data)

    assert record.result == "ERROR"
    assert record.rejection_reason.startswith("malformed line:")


def test_empty_external_reference_is_an_error_record():
    data = (
        "external_reference,result,amount_ars,paid_reference,rejection_code,rejection_reason\n"
        ",PAID,100.00,X,,\n"
    ).encode("utf-8")

    (record,) = DebugCsvAdapter().parse_response(data)

    assert record.result == "ERROR"
    assert record.external_reference is None
    assert record.rejection_reason == "missing external_reference"

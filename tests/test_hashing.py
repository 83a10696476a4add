from decimal import Decimal

import pytest

from debitrecon.services.direct_debit.hashing import (
    build_raw_hash,
    hash_reference_fallback,
    normalize_external_reference,
    parse_amount_ars,
    reference_or_fallback,
    sha256_hex,
)


def test_sha256_hex_of_known_bytes():
    assert sha256_hex(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_normalize_external_reference():
    assert normalize_external_reference("  REF123 ") == "REF123"
    assert normalize_external_reference("   ") is None
    assert normalize_external_reference(None) is None
    assert reference_or_fallback("", "AT-7") == "AT-7"


def test_raw_hash_is_order_and_whitespace_insensitive():
    a = build_raw_hash({"external_reference": "REF1", "result": "PAID", "amount_ars": "10.00"})
    b = build_raw_hash({"result": " PAID", "amount_ars": "10.00 ", "external_reference": "REF1"})
    assert a == b


def test_raw_hash_ignores_empty_values_and_raw_line():
    fields = {"external_reference": "REF1", "paid_reference": "", "raw_line": "REF1,,"}
    assert build_raw_hash(fields) == hash_reference_fallback("REF1")


def test_reference_fallback_hash_matches_manual_digest():
    assert hash_reference_fallback("REF123") == sha256_hex(b"external_reference=REF123")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1234.56", "1234.56"),
        ("1234,56", "1234.56"),
        ("1.234,56", "1234.56"),
        ("1,234.56", "1234.56"),
        ("$ 1.234,56", "1234.56"),
        ("ARS 1000", "1000.00"),
        ("1.234", "1234.00"),
        ("10.005", "10005.00"),
        ("0,005", "5.00"),
        ("2500.5", "2500.50"),
        ("1.234.567,8", "1234567.80"),
    ],
)
def test_parse_amount_ars(raw, expected):
    assert parse_amount_ars(raw) == Decimal(expected)


@pytest.mark.parametrize("raw", [None, "", "abc", "1,2,3.4.5", "12a"])
def test_parse_amount_ars_rejects_garbage(raw):
    assert parse_amount_ars(raw) is None


def test_parse_amount_rounds_half_up():
    assert parse_amount_ars("10.125") == Decimal("10125.00")
    assert parse_amount_ars("10.1250") == Decimal("10.13")

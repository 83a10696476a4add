"""Reference canonicalization, row hashing and ARS amount parsing.

Pure functions shared by every format adapter and by the reconciliation code,
so outbound items and inbound rows hash the same way regardless of adapter.
"""

import hashlib
import re
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


CENTS = Decimal("0.01")
# Forensic copy of the whole line; never part of the business identity of a row.
RAW_LINE_FIELD = "raw_line"

_AMOUNT_NOISE = re.compile(r"(?i)ars|\$|\s")
_AMOUNT_SHAPE = re.compile(r"^-?[0-9.,]+$")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def normalize_external_reference(raw: str | None) -> str | None:
    """Trimmed reference, or None when nothing usable is left."""

    if raw is None:
        return None
    value = str(raw).strip()
    return value or None


def reference_or_fallback(raw: str | None, fallback: str) -> str:
    return normalize_external_reference(raw) or fallback


def build_raw_hash(fields: Mapping[str, str | None]) -> str:
    """Stable digest of a row's business-identifying fields.

    Keys are sorted and values trimmed; empty values and the raw line are
    skipped, so a row carrying only its reference hashes exactly like
    `hash_reference_fallback` of that reference.
    """

    parts = []
    for key in sorted(fields):
        if key == RAW_LINE_FIELD:
            continue
        value = (fields[key] or "").strip()
        if value:
            parts.append(f"{key}={value}")
    return sha256_hex("|".join(parts).encode("utf-8"))


def hash_reference_fallback(external_reference: str) -> str:
    return sha256_hex(f"external_reference={external_reference}".encode("utf-8"))


def quantize_ars(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_amount_ars(raw: str | None) -> Decimal | None:
    """Parse a locale-formatted ARS amount (`1.234,56`, `1,234.56`, `$ 1000`).

    Returns None for blanks and anything that is not a number. A single dot
    followed by exactly three digits is read as a thousands separator, the way
    es-AR formats amounts.
    """

    if raw is None:
        return None
    value = _AMOUNT_NOISE.sub("", str(raw))
    if not value or not _AMOUNT_SHAPE.match(value):
        return None

    last_dot = value.rfind(".")
    last_comma = value.rfind(",")
    if last_dot >= 0 and last_comma >= 0:
        decimal_sep = "." if last_dot > last_comma else ","
        thousands_sep = "," if decimal_sep == "." else "."
        if value.count(decimal_sep) > 1:
            return None
        value = value.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif last_comma >= 0:
        head, _, tail = value.rpartition(",")
        if value.count(",") == 1 and len(tail) != 3:
            value = f"{head}.{tail}"
        else:
            value = value.replace(",", "")
    elif last_dot >= 0:
        head, _, tail = value.rpartition(".")
        if value.count(".") > 1 or len(tail) == 3:
            value = value.replace(".", "")

    try:
        amount = Decimal(value)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return quantize_ars(amount)

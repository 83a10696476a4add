"""Reference CSV adapter, readable by humans and spreadsheets.

Outbound header:
    external_reference,attempt_id,charge_id,agency_id,scheduled_for,amount_ars,
    holder_name,holder_tax_id,cbu_last4

Inbound header (extra columns are allowed):
    external_reference,result,amount_ars,paid_reference,rejection_code,rejection_reason

Quoting follows RFC 4180, so quoted fields may span lines. Each response record
is parsed on its own and a broken one only turns into an ERROR record.
"""

import csv
import io
from collections.abc import Iterable, Iterator, Sequence
from datetime import date
from decimal import Decimal

from pydantic import BaseModel

from debitrecon.services.direct_debit.adapters.base import (
    BuiltPresentment,
    ParsedRecord,
    PresentmentFileMeta,
    PresentmentMeta,
    PresentmentRow,
    ResponseResult,
    to_iso_timestamp,
    total_amount,
)
from debitrecon.services.direct_debit.hashing import (
    RAW_LINE_FIELD,
    build_raw_hash,
    normalize_external_reference,
    parse_amount_ars,
    quantize_ars,
)


PRESENTMENT_HEADER = [
    "external_reference",
    "attempt_id",
    "charge_id",
    "agency_id",
    "scheduled_for",
    "amount_ars",
    "holder_name",
    "holder_tax_id",
    "cbu_last4",
]
RESPONSE_HEADER = [
    "external_reference",
    "result",
    "amount_ars",
    "paid_reference",
    "rejection_code",
    "rejection_reason",
]

_RESULT_ALIASES: dict[str, ResponseResult] = {
    "PAID": "PAID",
    "PAGADO": "PAID",
    "REJECTED": "REJECTED",
    "RECHAZADO": "REJECTED",
}


def _write_csv(lines: Iterable[Sequence[str]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerows(lines)
    return buffer.getvalue().encode("utf-8")


def _read_logical_records(text: str) -> Iterator[tuple[int, list[str], str, str | None]]:
    """Yield (first line number, fields, source text, parse error) per CSV record.

    Quoted fields may span lines. A record the reader rejects is still yielded,
    with its error, and reading resumes at the next physical line. Blank
    records are skipped.
    """

    consumed: list[str] = []

    def physical_lines() -> Iterator[str]:
        for line in io.StringIO(text, newline=""):
            consumed.append(line)
            yield line

    reader = csv.reader(physical_lines(), strict=True)
    while True:
        line_no = reader.line_num + 1
        consumed.clear()
        try:
            cols = next(reader)
            error = None
        except StopIteration:
            return
        except csv.Error as exc:
            cols, error = [], str(exc)
        source = "".join(consumed).strip()
        if not source:
            continue
        yield line_no, cols, source, error


def status_to_result(raw_status: str | None) -> ResponseResult:
    return _RESULT_ALIASES.get((raw_status or "").strip().upper(), "ERROR")


class DebugResponseRecord(BaseModel):
    external_reference: str
    result: str
    amount_ars: Decimal | None = None
    paid_reference: str | None = None
    rejection_code: str | None = None
    rejection_reason: str | None = None


def build_debug_response_csv(records: Iterable[DebugResponseRecord]) -> bytes:
    """Render a response file the debug adapter can parse back."""

    lines = [RESPONSE_HEADER]
    for record in records:
        lines.append(
            [
                record.external_reference,
                record.result,
                "" if record.amount_ars is None else f"{quantize_ars(record.amount_ars):.2f}",
                record.paid_reference or "",
                record.rejection_code or "",
                record.rejection_reason or "",
            ]
        )
    return _write_csv(lines)


class DebugCsvAdapter:
    """Plain CSV with a header row."""

    name = "debug_csv"
    content_type = "text/csv; charset=utf-8"
    max_reference_length = None

    def build_presentment(
        self,
        business_date: date,
        rows: Sequence[PresentmentRow],
        meta: PresentmentMeta,
    ) -> BuiltPresentment:
        lines = [PRESENTMENT_HEADER]
        for row in rows:
            lines.append(
                [
                    row.external_reference,
                    str(row.attempt_id),
                    str(row.charge_id),
                    str(row.agency_id),
                    to_iso_timestamp(row.scheduled_for),
                    f"{quantize_ars(row.amount_ars):.2f}",
                    row.holder_name or "",
                    row.holder_tax_id or "",
                    row.cbu_last4 or "",
                ]
            )
        return BuiltPresentment(
            file_name=f"debug_pd_presentment_{business_date.isoformat()}.csv",
            data=_write_csv(lines),
            meta=PresentmentFileMeta(adapter=self.name, rows=len(rows), total_amount_ars=total_amount(rows)),
        )

    def parse_response(self, data: bytes) -> list[ParsedRecord]:
        text = data.decode("utf-8-sig", errors="replace")
        header: list[str] | None = None
        records = []
        for line_no, cols, source, error in _read_logical_records(text):
            if header is None:
                header = [] if error else [col.strip() for col in cols]
                continue
            records.append(self._parse_record(header, line_no, cols, source, error))
        return records

    def _parse_record(
        self, header: list[str], line_no: int, cols: list[str], source: str, error: str | None
    ) -> ParsedRecord:
        problem = f"malformed line: {error}" if error else None
        if problem is None and len(cols) != len(header):
            problem = f"malformed line: expected {len(header)} fields, got {len(cols)}"

        raw = {name: "" for name in RESPONSE_HEADER}
        for idx, name in enumerate(header):
            if name in raw and idx < len(cols):
                raw[name] = cols[idx]
        raw[RAW_LINE_FIELD] = source

        external_reference = normalize_external_reference(raw["external_reference"])
        result = status_to_result(raw["result"])
        amount = parse_amount_ars(raw["amount_ars"])
        if problem is None and "external_reference" not in header:
            problem = "missing external_reference column"
        if problem is None and external_reference is None:
            problem = "missing external_reference"
        if problem is None and raw["amount_ars"].strip() and amount is None:
            problem = f"invalid amount: {raw['amount_ars']}"

        return ParsedRecord(
            line_no=line_no,
            external_reference=external_reference,
            raw_hash=build_raw_hash(raw),
            result="ERROR" if problem else result,
            amount_ars=amount,
            paid_reference=normalize_external_reference(raw["paid_reference"]),
            rejection_code=normalize_external_reference(raw["rejection_code"]),
            rejection_reason=problem or normalize_external_reference(raw["rejection_reason"]),
            raw=raw,
        )

"""Turn a debug presentment CSV into a debug response CSV.

Every presented row is answered PAID unless its reference is passed with
`--reject`. Lets operators rehearse an import end to end without the bank.
"""

import argparse
import csv
import io
from pathlib import Path

from debitrecon.services.direct_debit.adapters.debug_csv import DebugResponseRecord, build_debug_response_csv
from debitrecon.services.direct_debit.hashing import parse_amount_ars


def build_records(presentment: bytes, rejected: set[str], rejection_code: str) -> list[DebugResponseRecord]:
    reader = csv.DictReader(io.StringIO(presentment.decode("utf-8-sig")))
    records = []
    for row in reader:
        reference = (row.get("external_reference") or "").strip()
        if not reference:
            continue
        if reference in rejected:
            records.append(
                DebugResponseRecord(
                    external_reference=reference,
                    result="REJECTED",
                    rejection_code=rejection_code,
                    rejection_reason="Rejected by rehearsal",
                )
            )
        else:
            records.append(
                DebugResponseRecord(
                    external_reference=reference,
                    result="PAID",
                    amount_ars=parse_amount_ars(row.get("amount_ars")),
                    paid_reference=f"BNK-{reference}",
                )
            )
    return records


def main() -> None:
    """Parse CLI args and write the response file."""

    parser = argparse.ArgumentParser(description="Build a debug response CSV from a debug presentment CSV.")
    parser.add_argument("presentment", type=Path)
    parser.add_argument("--out", type=Path, required=True)
    parser.add_argument("--reject", action="append", default=[], help="External reference to reject (repeatable)")
    parser.add_argument("--rejection-code", default="R10")
    args = parser.parse_args()

    records = build_records(args.presentment.read_bytes(), set(args.reject), args.rejection_code)
    args.out.write_bytes(build_debug_response_csv(records))
    paid = sum(1 for record in records if record.result == "PAID")
    print(f"wrote {args.out} rows={len(records)} paid={paid} rejected={len(records) - paid}")


if __name__ == "__main__":
    main()

"""Fetch and print the direct-debit batch listing as JSON."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for batch history checks."""

    parser = argparse.ArgumentParser(description="Fetch direct-debit batch listing endpoint.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", required=True)
    parser.add_argument("--from", dest="date_from", default=None, help="YYYY-MM-DD")
    parser.add_argument("--to", dest="date_to", default=None, help="YYYY-MM-DD")
    args = parser.parse_args()

    params = {key: value for key, value in {"from": args.date_from, "to": args.date_to}.items() if value}
    resp = httpx.get(
        f"{args.base_url}/direct-debit/batches",
        params=params,
        headers={"x-api-key": args.api_key},
        timeout=10.0,
    )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()

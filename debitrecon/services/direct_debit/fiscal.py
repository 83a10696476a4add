"""Fiscal document issuance collaborator, called after a charge is collected."""

from datetime import datetime, timezone
from typing import Protocol

import httpx
from pydantic import BaseModel

from debitrecon.common.config import settings
from debitrecon.common.logging import trace_id_ctx


class FiscalIssueResult(BaseModel):
    ok: bool
    status: str
    message: str = ""
    document_reference: str | None = None


class FiscalIssuer(Protocol):
    def issue_for_charge(self, charge_id: int, actor_user_id: int | None) -> FiscalIssueResult: ...


class MockFiscalIssuer:
    """Issues a fake document reference; used in testing environments."""

    def issue_for_charge(self, charge_id: int, actor_user_id: int | None) -> FiscalIssueResult:
        del actor_user_id
        stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        return FiscalIssueResult(ok=True, status="ISSUED", document_reference=f"MOCK-{charge_id}-{stamp}")


class HttpFiscalIssuer:
    """Calls the fiscal issuance service over HTTP."""

    def __init__(self, base_url: str, timeout_seconds: float, client: httpx.Client | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout_seconds)

    def issue_for_charge(self, charge_id: int, actor_user_id: int | None) -> FiscalIssueResult:
        resp = self.client.post(
            f"{self.base_url}/charges/{charge_id}/issue",
            headers={"x-trace-id": trace_id_ctx.get()},
            json={"actor_user_id": actor_user_id},
        )
        if resp.status_code >= 400:
            return FiscalIssueResult(ok=False, status="FAILED", message=f"HTTP {resp.status_code}: {resp.text[:200]}")
        body = resp.json()
        return FiscalIssueResult(
            ok=bool(body.get("ok")),
            status=str(body.get("status") or ("ISSUED" if body.get("ok") else "FAILED")),
            message=str(body.get("message") or ""),
            document_reference=body.get("document_reference"),
        )


def resolve_fiscal_issuer() -> FiscalIssuer:
    if settings.fiscal_issuer_mode.strip().upper() == "HTTP":
        return HttpFiscalIssuer(settings.fiscal_issuer_url, settings.fiscal_timeout_seconds)
    return MockFiscalIssuer()

"""HTTP surface tests; the module-level service is swapped for a test-wired one."""

import pytest
from fastapi.testclient import TestClient

from conftest import seed_attempt, seed_charge
from debitrecon.services.direct_debit import main
from debitrecon.services.direct_debit.adapters.debug_csv import DebugCsvAdapter
from debitrecon.services.direct_debit.service import DirectDebitService


HEADERS = {"x-api-key": "test-key", "x-trace-id": "trace-1", "x-actor-user-id": "7"}
RESPONSE_CSV = (
    "external_reference,result,amount_ars,paid_reference,rejection_code,rejection_reason\n"
    "REF123,PAID,1000.00,BNK-1,,\n"
).encode("utf-8")


@pytest.fixture
def client(monkeypatch, session_factory, storage, fiscal):
    service = DirectDebitService(session_factory, adapter=DebugCsvAdapter(), storage=storage, fiscal_issuer=fiscal)
    monkeypatch.setattr(main, "service", service)
    return TestClient(main.app)


@pytest.fixture
def due_attempt(session_factory):
    with session_factory() as db:
        seed_attempt(db, seed_charge(db), external_reference="REF123")
        db.commit()


def test_health_and_metrics_are_open(client):
    assert client.get("/health").json() == {"ok": True}
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "presentment_batches_total" in resp.text


def test_api_key_is_required(client):
    assert client.get("/direct-debit/batches").status_code == 401
    assert client.post("/direct-debit/batches", headers={"x-api-key": "wrong"}).status_code == 401


def test_presentment_download_import_and_listing(client, due_attempt):
    created = client.post("/direct-debit/batches", params={"date": "2025-01-08"}, headers=HEADERS)
    assert created.status_code == 200
    body = created.json()
    batch_id = body["batch"]["id_batch"]
    assert body["batch"]["status"] == "READY"
    assert body["batch"]["total_amount_ars"] == "1000.00"
    assert body["download_url"] == f"/direct-debit/batches/{batch_id}/download"

    download = client.get(f"/direct-debit/batches/{batch_id}/download", headers=HEADERS)
    assert download.status_code == 200
    assert download.headers["content-type"] == "text/csv; charset=utf-8"
    assert "debug_pd_presentment_2025-01-08.csv" in download.headers["content-disposition"]
    assert download.content.decode("utf-8").splitlines()[1].startswith("REF123,")

    imported = client.post(
        f"/direct-debit/batches/{batch_id}/import-response",
        headers=HEADERS,
        files={"file": ("respuesta.csv", RESPONSE_CSV, "text/csv")},
    )
    assert imported.status_code == 200
    assert imported.json()["summary"]["paid"] == 1
    inbound_id = imported.json()["inbound_batch_id"]

    again = client.post(
        f"/direct-debit/batches/{batch_id}/import-response",
        headers=HEADERS,
        files={"file": ("respuesta.csv", RESPONSE_CSV, "text/csv")},
    )
    assert again.json() == imported.json()

    listing = client.get(
        "/direct-debit/batches", params={"from": "2025-01-01", "to": "2099-12-31"}, headers=HEADERS
    )
    assert listing.status_code == 200
    payload = listing.json()
    assert payload["range"] == {"from": "2025-01-01", "to": "2099-12-31"}
    by_id = {item["id_batch"]: item for item in payload["items"]}
    assert set(by_id) == {batch_id, inbound_id}
    assert payload["items"][0]["id_batch"] == inbound_id
    assert by_id[batch_id]["status"] == "RECONCILED"
    assert by_id[batch_id]["items_count"] == 1
    assert by_id[inbound_id]["parent_batch"]["id_batch"] == batch_id
    assert by_id[inbound_id]["total_paid_rows"] == 1

    stored = client.get(f"/direct-debit/batches/{inbound_id}/download", headers=HEADERS)
    assert stored.content == RESPONSE_CSV


def test_listing_defaults_to_recent_range(client):
    resp = client.get("/direct-debit/batches", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["items"] == []
    assert set(resp.json()["range"]) == {"from", "to"}


def test_empty_batch_has_no_download(client):
    created = client.post("/direct-debit/batches", params={"date": "2025-01-08"}, headers=HEADERS).json()
    assert created["batch"]["status"] == "EMPTY"
    assert created["download_url"] is None

    resp = client.get(f"/direct-debit/batches/{created['batch']['id_batch']}/download", headers=HEADERS)
    assert resp.status_code == 404


def test_unknown_batches_return_404(client):
    assert client.get("/direct-debit/batches/404/download", headers=HEADERS).status_code == 404
    resp = client.post(
        "/direct-debit/batches/404/import-response",
        headers=HEADERS,
        files={"file": ("r.csv", RESPONSE_CSV, "text/csv")},
    )
    assert resp.status_code == 404


def test_storage_failure_maps_to_502(client, storage, due_attempt):
    storage.fail_uploads = True
    resp = client.post("/direct-debit/batches", params={"date": "2025-01-08"}, headers=HEADERS)
    assert resp.status_code == 502

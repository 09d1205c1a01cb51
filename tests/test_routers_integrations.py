"""
test_routers_integrations.py — Tests for the Metakocka sync HTTP surface.

Uses the conftest client (DB + fake ERP overridden, X-Organization-Id set).

Called by: pytest
Depends on: app/routers/integrations.py, tests/conftest.py (client, fake_erp)
"""

from unittest.mock import AsyncMock, patch

from app.connectors.metakocka import MetakockaError
from app.dependencies import get_erp_client
from app.main import app
from app.services import integration_log

ORG = "org-test"
BASE = "/api/integrations/metakocka"


# ── Organization header / entity type ────────────────────────────────


def test_missing_organization_header(client):
    resp = client.get(f"{BASE}/mappings", headers={"X-Organization-Id": ""})
    assert resp.status_code == 400
    body = resp.json()
    assert body["status_code"] == 400
    assert "X-Organization-Id" in body["error"]
    assert body["request_id"] == resp.headers["X-Request-ID"]


def test_unknown_entity_type_is_404(client):
    resp = client.post(f"{BASE}/warehouse/1/sync")
    assert resp.status_code == 404
    assert "warehouse" in resp.json()["error"]


# ── Single sync ──────────────────────────────────────────────────────


def test_push_contact(client, make_contact, fake_erp):
    contact = make_contact()
    resp = client.post(f"{BASE}/contact/{contact.id}/sync")
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["created"] is True
    assert data["external_id"] in fake_erp.partners


def test_push_failure_is_reported_in_body(client, make_contact, fake_erp):
    fake_erp.fail["add_partner"] = MetakockaError("Invalid credentials", "authentication", "HTTP_401")
    contact = make_contact()
    resp = client.post(f"{BASE}/contact/{contact.id}/sync")
    assert resp.status_code == 200
    assert resp.json()["success"] is False
    assert resp.json()["error"] == "Invalid credentials"


def test_pull_document(client, fake_erp):
    fake_erp.documents["61"] = {"mk_id": "61", "doc_type": "offer", "count_code": "P-1",
                                "product_list": [{"name": "x", "amount": "1", "price": "5"}]}
    resp = client.post(f"{BASE}/document/pull/61", params={"doc_type": "offer"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["local_id"] is not None


def test_no_credentials_is_409(client, make_contact):
    contact = make_contact()
    app.dependency_overrides.pop(get_erp_client)
    resp = client.post(f"{BASE}/contact/{contact.id}/sync")
    assert resp.status_code == 409
    assert ORG in resp.json()["error"]


# ── Bulk ─────────────────────────────────────────────────────────────


def test_bulk_sync_counts(client, make_product, fake_erp):
    products = [make_product(name=f"P{i}") for i in range(3)]
    fake_erp.fail_codes = {f"PROD-{products[0].id}"}
    resp = client.post(f"{BASE}/product/bulk-sync", json={"ids": [p.id for p in products]})
    assert resp.status_code == 200
    data = resp.json()
    assert (data["total"], data["created"], data["failed"]) == (3, 2, 1)
    assert data["success"] is False


def test_bulk_sync_empty_list(client, fake_erp):
    resp = client.post(f"{BASE}/contact/bulk-sync", json={"ids": []})
    assert resp.status_code == 200
    assert resp.json()["total"] == 0
    assert resp.json()["success"] is True
    assert fake_erp.calls == []


def test_bulk_sync_over_limit(client, fake_erp):
    resp = client.post(f"{BASE}/contact/bulk-sync", json={"ids": list(range(1, 502))})
    assert resp.status_code == 400
    assert fake_erp.calls == []


def test_bulk_sync_at_limit_is_accepted(client):
    resp = client.post(f"{BASE}/contact/bulk-sync", json={"ids": list(range(1, 501))})
    assert resp.status_code == 200
    assert resp.json()["failed"] == 500


def test_bulk_sync_non_integer_local_ids(client):
    resp = client.post(f"{BASE}/contact/bulk-sync", json={"ids": ["abc"]})
    assert resp.status_code == 400


def test_bulk_pull_all_unsynced(client, fake_erp):
    fake_erp.partners["11"] = {"mk_id": "11", "name": "Kos", "partner_type": "P"}
    resp = client.post(f"{BASE}/contact/bulk-sync", json={"direction": "from-external"})
    assert resp.json()["created"] == 1


def test_bulk_bad_direction_is_422(client):
    resp = client.post(f"{BASE}/contact/bulk-sync", json={"direction": "sideways"})
    assert resp.status_code == 422
    assert resp.json()["error"] == "Validation error"


# ── Discovery ────────────────────────────────────────────────────────


def test_unsynced_failure_vs_empty(client, fake_erp):
    empty = client.get(f"{BASE}/product/unsynced").json()
    assert empty["ok"] is True
    assert empty["count"] == 0

    fake_erp.fail["list_products"] = MetakockaError("Network error", "network")
    failed = client.get(f"{BASE}/product/unsynced").json()
    assert failed["ok"] is False
    assert failed["error"] == "Network error"


def test_unsynced_local(client, make_contact):
    contact = make_contact()
    data = client.get(f"{BASE}/contact/unsynced/local").json()
    assert data["items"] == [{"id": contact.id}]


# ── Mappings / logs / intents ────────────────────────────────────────


def test_mappings_and_stats(client, make_product):
    product = make_product()
    client.post(f"{BASE}/product/{product.id}/sync")

    items = client.get(f"{BASE}/mappings", params={"entity_type": "product"}).json()["items"]
    assert [m["local_id"] for m in items] == [product.id]
    stats = client.get(f"{BASE}/mappings/stats").json()
    assert stats["product"]["synced"] == 1


def test_orphans(client, make_product, db_session):
    product = make_product()
    client.post(f"{BASE}/product/{product.id}/sync")
    db_session.delete(product)
    db_session.commit()

    data = client.get(f"{BASE}/mappings/orphans", params={"entity_type": "product"}).json()
    assert data["count"] == 1


def test_logs_and_resolve(client, db_session):
    entry = integration_log.record(db_session, "error", "api", "boom", organization_id=ORG)
    data = client.get(f"{BASE}/logs", params={"level": "error"}).json()
    assert data["total"] == 1

    resp = client.post(f"{BASE}/logs/{entry.id}/resolve", json={"notes": "fixed"})
    assert resp.json()["resolved"] is True
    assert client.post(f"{BASE}/logs/99999/resolve").status_code == 404

    stats = client.get(f"{BASE}/logs/stats").json()
    assert stats["unresolved_errors"] == 0


def test_reconcile_intents(client):
    resp = client.post(f"{BASE}/intents/reconcile")
    assert resp.status_code == 200
    assert resp.json()["checked"] == 0


# ── Credentials ──────────────────────────────────────────────────────


def test_put_credentials_masks_secret(client):
    resp = client.put(f"{BASE}/credentials", json={"company_id": "42", "secret_key": "topsecret-1234"})
    assert resp.status_code == 200
    assert resp.json()["secret_key"].endswith("1234")
    assert "topsecret" not in resp.text


def test_put_credentials_blank_rejected(client):
    resp = client.put(f"{BASE}/credentials", json={"company_id": " ", "secret_key": "x"})
    assert resp.status_code == 422


def test_credentials_test_failure_is_logged(client, db_session):
    client.put(f"{BASE}/credentials", json={"company_id": "42", "secret_key": "wrong"})
    error = MetakockaError("Invalid credentials", "authentication")
    with patch("app.connectors.metakocka.MetakockaClient.test_connection", new=AsyncMock(side_effect=error)):
        resp = client.post(f"{BASE}/credentials/test")
    assert resp.json()["success"] is False
    _, total = integration_log.list_logs(db_session, ORG, category="auth")
    assert total == 1

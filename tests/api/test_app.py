"""
API tests for the dashboard backend.
"""
import pytest
from fastapi.testclient import TestClient

from dashboard.app import create_app

CHIPS = "6291234567890"


@pytest.fixture
def client(test_config) -> TestClient:
    return TestClient(create_app(test_config))


def _upload(client, text, name="lpo.txt"):
    return client.post(
        "/api/lpos/upload",
        files={"file": (name, text.encode("utf-8"), "text/plain")},
    )


def _sku(**kw) -> dict:
    body = {
        "barcode": CHIPS, "client": "Acme Foods", "brand": "Crispy", "sku_name": "Chips",
        "case_pack": 12, "shelf_life": "9 months", "talabat_sku": "TB-1",
    }
    body.update(kw)
    return body


@pytest.mark.api
class TestLpoRoutes:

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_upload_ingests(self, client, sample_lpo_text, test_config):
        resp = _upload(client, sample_lpo_text)

        assert resp.status_code == 200
        body = resp.json()
        assert body["po_number"] == "PO-458812"
        assert body["line_count"] == 2
        assert (test_config.inbox_dir / body["filename"]).exists()

    def test_duplicate_upload_conflicts(self, client, sample_lpo_text):
        _upload(client, sample_lpo_text)
        resp = _upload(client, sample_lpo_text)

        assert resp.status_code == 409
        assert client.get("/api/stats").json()["orders"] == 1

    def test_rejected_upload_is_removed_from_inbox(self, client, test_config, sample_lpo_text):
        first = _upload(client, sample_lpo_text).json()["filename"]
        assert _upload(client, sample_lpo_text).status_code == 409
        assert _upload(client, "   \n").status_code >= 400

        assert [p.name for p in test_config.inbox_dir.iterdir()] == [first]

    def test_upload_rejects_other_types(self, client):
        resp = _upload(client, "a,b\n", name="lpo.csv")
        assert resp.status_code == 400

    def test_list_and_get(self, client, sample_lpo_text):
        _upload(client, sample_lpo_text)

        [row] = client.get("/api/lpos").json()
        assert row["po_number"] == "PO-458812"
        assert row["total_incl_vat"] == pytest.approx(204.75)

        detail = client.get("/api/lpos/PO-458812").json()
        assert len(detail["order"]["line_items"]) == 2
        assert detail["summary"]["ordered_total"] == pytest.approx(204.75)

    def test_get_unknown_lpo(self, client):
        assert client.get("/api/lpos/PO-NOPE").status_code == 404

    def test_save_invoice(self, client, sample_lpo_text):
        _upload(client, sample_lpo_text)
        resp = client.post("/api/lpos/PO-458812/invoice", json={
            "invoice_number": "INV-889",
            "invoice_date": "2026-02-06",
            "deliveries": {CHIPS: 10},
            "commission_pct": 12,
            "status": "partial",
            "sync": True,
        })

        assert resp.status_code == 200
        body = resp.json()
        assert body["lines_saved"] == 2
        assert body["partial"] is False
        assert body["summary"]["grand_total"] == pytest.approx(47.25)
        assert body["sync"]["rows_written"] == 2

        rows = client.get("/api/brand-performance", params={"po_number": "PO-458812"}).json()
        assert len(rows) == 2

        actions = [e["action"] for e in client.get("/api/lpos/PO-458812/audit").json()]
        assert actions == ["ingested", "invoice_saved", "brand_synced"]

    def test_save_invoice_validation(self, client, sample_lpo_text):
        _upload(client, sample_lpo_text)
        resp = client.post("/api/lpos/PO-458812/invoice", json={"invoice_date": "2026-02-06"})

        assert resp.status_code == 400
        assert resp.json()["fields"] == ["invoice_number"]

    def test_save_invoice_unknown_po(self, client):
        resp = client.post("/api/lpos/PO-NOPE/invoice", json={
            "invoice_number": "INV-1", "invoice_date": "2026-02-06",
        })
        assert resp.status_code == 404

    def test_sync_without_invoice(self, client, sample_lpo_text):
        _upload(client, sample_lpo_text)
        assert client.post("/api/lpos/PO-458812/sync").status_code == 400


@pytest.mark.api
class TestSkuRoutes:

    def test_add_sku(self, client):
        resp = client.post("/api/skus", json=_sku())
        assert resp.status_code == 201
        assert resp.json()["barcode"] == CHIPS

    def test_add_duplicate(self, client):
        client.post("/api/skus", json=_sku())
        assert client.post("/api/skus", json=_sku()).status_code == 409

    def test_add_incomplete(self, client):
        resp = client.post("/api/skus", json=_sku(talabat_sku=None))
        assert resp.status_code == 400
        assert resp.json()["fields"] == ["talabat_sku"]

    def test_bulk_upsert(self, client):
        resp = client.post("/api/skus/bulk", json={"rows": [
            {"Barcode": CHIPS, "Brand": "Crispy", "Client": "Acme Foods"},
            {"Brand": "No barcode", "SKU Name": "Mystery"},
        ]})

        assert resp.status_code == 200
        assert (resp.json()["inserted"], resp.json()["skipped"]) == (1, 1)

    def test_bulk_without_identifying_column(self, client):
        resp = client.post("/api/skus/bulk", json={"rows": [{"Colour": "Red"}]})
        assert resp.status_code == 400

    def test_import_csv(self, client, sample_sku_csv):
        with open(sample_sku_csv, "rb") as f:
            resp = client.post("/api/skus/import", files={"file": ("master.csv", f, "text/csv")})

        assert resp.status_code == 200
        assert resp.json()["inserted"] == 3

    def test_list_and_health(self, client):
        client.post("/api/skus", json=_sku(packshot="Yes", nutrition_info="Yes", ingredients_info="Yes"))
        client.post("/api/skus/bulk", json={"rows": [{"Barcode": "1", "Brand": "Bare"}]})

        red = client.get("/api/skus", params={"health": "red"}).json()
        assert [r["barcode"] for r in red] == ["1"]
        assert client.get("/api/skus/health").json() == {"red": 1, "amber": 0, "ok": 1, "total": 2}

"""
HTTP API tests.

Verifies:
- Write routes answer the {success, message?, id?} envelope with the
  status its failure reason maps to (400 malformed, 404 not found, 503 busy)
- Admin-only routes reject other users (403)
- Report routes validate their parameters
"""

import base64

from conftest import estimate_payload, user_headers


ADMIN = user_headers("admin@example.com")


# =============================================================================
# SYSTEM
# =============================================================================


class TestSystem:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["grid"]["status"] == "healthy"

    def test_auth_status_normalizes_email(self, client):
        resp = client.get("/api/auth/status", headers=user_headers("Admin@Example.com"))
        assert resp.get_json() == {"is_admin": True, "email": "admin@example.com"}

    def test_auth_status_without_header(self, client):
        resp = client.get("/api/auth/status")
        assert resp.get_json() == {"is_admin": False, "email": "unknown"}

    def test_init_requires_admin(self, client):
        resp = client.post("/api/system/init", headers=user_headers())
        assert resp.status_code == 403

    def test_init_creates_sheets_once(self, client, ctx):
        first = client.post("/api/system/init", headers=ADMIN)
        second = client.post("/api/system/init", headers=ADMIN)

        assert first.status_code == 200
        created = first.get_json()["created"]
        assert ctx.settings.sheet("estimate") in created
        assert ctx.settings.sheet("journal_config") in created
        assert second.get_json()["created"] == []

    def test_init_while_stores_busy_is_503(self, client, ctx):
        lock = ctx.locks.get("stores")
        assert lock.try_acquire(100)
        try:
            resp = client.post("/api/system/init", headers=ADMIN)
        finally:
            lock.release()

        assert resp.status_code == 503
        assert resp.get_json() == {"success": False, "message": "Busy"}
        assert client.post("/api/system/init", headers=ADMIN).status_code == 200

    def test_cors_header_for_dev_origin(self, client):
        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"


# =============================================================================
# WRITE ENVELOPE
# =============================================================================


class TestWriteEnvelope:

    def test_save_estimate(self, client):
        resp = client.post("/api/estimates", json={"estimate": estimate_payload()}, headers=user_headers())

        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "id": "0000001-00"}

    def test_malformed_payload_is_400(self, client):
        resp = client.post("/api/estimates", data="not json", headers=user_headers())

        assert resp.status_code == 400
        body = resp.get_json()
        assert body["success"] is False
        assert body["message"]

    def test_busy_store_is_503(self, client, ctx):
        lock = ctx.locks.get("stores")
        assert lock.try_acquire(100)
        try:
            resp = client.post("/api/deposits", json={"amount": 1}, headers=user_headers())
        finally:
            lock.release()

        assert resp.status_code == 503
        assert resp.get_json() == {"success": False, "message": "Busy"}

    def test_delete_then_delete_again(self, client):
        saved = client.post("/api/deposits", json={"amount": 1}, headers=user_headers()).get_json()

        first = client.delete(f"/api/records/{saved['id']}", headers=user_headers())
        second = client.delete(f"/api/records/{saved['id']}", headers=user_headers())

        assert first.status_code == 200
        assert second.status_code == 404
        assert second.get_json() == {"success": False, "message": "Not found"}

    def test_delete_scoped_to_one_store(self, client, ctx):
        client.post("/api/estimates", json=estimate_payload(), headers=user_headers())

        resp = client.delete("/api/records/0000001-00?type=estimate", headers=user_headers())

        assert resp.status_code == 200
        # the derived order minted the same id from its own counter
        assert client.get("/api/orders/0000001-00", headers=user_headers()).status_code == 200
        assert client.get("/api/estimates/0000001-00", headers=user_headers()).status_code == 404

    def test_delete_unknown_type_is_400(self, client):
        resp = client.delete("/api/records/0000001-00?type=bogus", headers=user_headers())
        assert resp.status_code == 400

    def test_deposit_records_acting_user(self, client):
        client.post("/api/deposits", json={"amount": 5}, headers=user_headers("Staff@Example.com"))

        items = client.get("/api/deposits", headers=user_headers()).get_json()["items"]

        assert items[0]["registrant"] == "staff@example.com"


# =============================================================================
# READS AND REPORTS
# =============================================================================


class TestReports:

    def test_estimate_roundtrip_through_api(self, client):
        client.post("/api/estimates", json=estimate_payload(), headers=user_headers())

        resp = client.get("/api/estimates/0000001-00", headers=user_headers())

        assert resp.status_code == 200
        assert resp.get_json()["header"]["client"] == "東和建設"

    def test_project_summaries(self, client):
        client.post("/api/estimates", json=estimate_payload(), headers=user_headers())

        items = client.get("/api/reports/projects", headers=user_headers()).get_json()["items"]

        assert [i["total_order_amount"] for i in items] == [40000]

    def test_analysis_rejects_bad_year(self, client):
        assert client.get("/api/reports/analysis/abc", headers=user_headers()).status_code == 400

    def test_journal_preview_requires_period(self, client):
        assert client.get("/api/reports/journal/preview", headers=user_headers()).status_code == 400

    def test_empty_journal_export_is_not_an_error(self, client):
        resp = client.post("/api/reports/journal/export", json={"year": 2023, "month": 1}, headers=user_headers())

        assert resp.status_code == 200
        assert resp.get_json() == {"success": False, "message": "対象データがありません"}

    def test_journal_export(self, client):
        payload = estimate_payload(status="請求済")
        client.post("/api/estimates", json=payload, headers=user_headers())

        resp = client.post("/api/reports/journal/export", json={"year": 2024, "month": 3}, headers=user_headers())

        body = resp.get_json()
        assert body["success"] is True
        assert body["filename"] == "集計表_2024年3月.csv"
        assert "東和建設" in base64.b64decode(body["data"]).decode("utf-8")

    def test_predict_price_without_inference_is_502(self, client):
        resp = client.post("/api/estimates/predict-price", json={"product": "クロス"}, headers=user_headers())
        assert resp.status_code == 502

    def test_masters_empty(self, client):
        resp = client.get("/api/masters", headers=user_headers())
        assert resp.get_json() == {"clients": [], "sets": [], "vendors": []}

    def test_journal_preview_does_not_wait_on_store_lock(self, client, ctx):
        client.post("/api/estimates", json=estimate_payload(status="請求済"), headers=user_headers())
        lock = ctx.locks.get("stores")
        assert lock.try_acquire(100)
        try:
            resp = client.get("/api/reports/journal/preview?year=2024&month=3", headers=user_headers())
        finally:
            lock.release()

        assert resp.status_code == 200
        assert resp.get_json()["rows"][0][0] == "東和建設"

    def test_journal_export_string_flags(self, client):
        client.post("/api/estimates", json=estimate_payload(status="請求済"), headers=user_headers())
        body = {"year": 2024, "month": 3, "sales": "false", "purchases": "true"}

        resp = client.post("/api/reports/journal/export", json=body, headers=user_headers())

        assert resp.status_code == 200
        assert resp.get_json() == {"success": False, "message": "対象データがありません"}

    def test_journal_export_rejects_unknown_flag(self, client):
        body = {"year": 2024, "month": 3, "sales": "maybe"}

        resp = client.post("/api/reports/journal/export", json=body, headers=user_headers())

        assert resp.status_code == 400

"""
Load Balancing Admin API Tests — settings, counter reset, workloads,
pending sweep, status repair, health probes.
"""

from datetime import datetime, timezone

from portal.models import db
from portal.models.request import Request

BASE = "/api/v1/admin/load-balancing"


class TestSettingsEndpoints:

    def test_defaults_when_unconfigured(self, client):
        res = client.get(f"{BASE}/settings")
        assert res.status_code == 200
        data = res.get_json()
        assert data["configured"] is False
        assert data["enabled"] is False
        assert data["strategy"] == "LEAST_LOADED"

    def test_update_and_read_back(self, client, make_user):
        admin = make_user()
        res = client.put(f"{BASE}/settings", json={
            "enabled": True, "strategy": "ROUND_ROBIN", "updated_by": admin.id,
        })
        assert res.status_code == 200
        assert res.get_json()["strategy"] == "ROUND_ROBIN"

        data = client.get(f"{BASE}/settings").get_json()
        assert data["configured"] is True
        assert data["enabled"] is True

    def test_invalid_strategy(self, client):
        res = client.put(f"{BASE}/settings", json={"strategy": "FASTEST"})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_RULE"

    def test_empty_update(self, client):
        assert client.put(f"{BASE}/settings", json={}).status_code == 400

    def test_string_boolean_rejected(self, client):
        res = client.put(f"{BASE}/settings", json={"enabled": "false"})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_RULE"
        assert body["details"] == {"enabled": "must be a boolean"}
        assert client.get(f"{BASE}/settings").get_json()["configured"] is False

    def test_unknown_updated_by(self, client):
        res = client.put(f"{BASE}/settings", json={"enabled": True, "updated_by": 987654})
        assert res.status_code == 422
        assert "updated_by" in res.get_json()["details"]

    def test_malformed_updated_by(self, client):
        res = client.put(f"{BASE}/settings", json={"enabled": True, "updated_by": "root"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_reset_counter(self, client):
        client.put(f"{BASE}/settings", json={"enabled": True, "strategy": "ROUND_ROBIN"})
        res = client.post(f"{BASE}/settings/reset-counter", json={})
        assert res.status_code == 200
        assert res.get_json()["round_robin_counter"] == 0

    def test_reset_counter_unconfigured(self, client):
        assert client.post(f"{BASE}/settings/reset-counter", json={}).status_code == 404


class TestOperationsEndpoints:

    def test_workloads(self, client, make_officer, make_request):
        officer = make_officer(full_name="Wendy")
        make_request(status="PROCUREMENT_REVIEW", assignee_id=officer.id)

        res = client.get(f"{BASE}/workloads")
        assert res.status_code == 200
        assert res.get_json() == [{"officer_id": officer.id, "name": "Wendy", "active_requests": 1}]

    def test_auto_assign_pending(self, client, make_officer, make_request):
        officer = make_officer()
        req = make_request(status="PROCUREMENT_REVIEW")
        client.put(f"{BASE}/settings", json={"enabled": True})

        res = client.post(f"{BASE}/auto-assign-pending", json={})
        assert res.status_code == 200
        assert res.get_json() == {"assigned": 1}
        assert db.session.get(Request, req.id).current_assignee_id == officer.id

    def test_auto_assign_pending_requires_enabled(self, client):
        res = client.post(f"{BASE}/auto-assign-pending", json={})
        assert res.status_code == 422

    def test_repair_statuses(self, client):
        now = datetime.now(timezone.utc)
        db.session.execute(Request.__table__.insert().values(
            reference="PR-OLD-0001", title="Old", total_estimated=0, currency="JMD",
            status="UNDER_REVIEW", created_at=now, updated_at=now,
        ))
        res = client.post(f"{BASE}/repair-statuses", json={})
        assert res.status_code == 200
        assert res.get_json() == {"repaired": 1}


class TestHealth:

    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"
        assert res.headers.get("X-Request-ID")

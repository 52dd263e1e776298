"""告警规则 + 告警管理接口测试。"""
import pytest
from httpx import AsyncClient

from vendmon.models.enums import Channel


@pytest.fixture
async def memory_rule(make_rule):
    return await make_rule()


# ── Alert Rules ──

class TestAlertRules:
    async def test_create_and_list(self, client: AsyncClient):
        resp = await client.post("/api/v1/alert-rules", json={
            "name": "CPU High", "metric": "cpu", "operator": ">=", "threshold": 80,
            "escalation_level": "high", "cooldown_minutes": 10,
            "steps": [{"level": 1, "action": "notify_admin", "notification_channel": "email"}],
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["metric"] == "cpu"
        assert body["steps"][0]["notification_channel"] == "email"

        resp = await client.get("/api/v1/alert-rules")
        assert [r["name"] for r in resp.json()] == ["CPU High"]

    async def test_create_rejects_bad_rule(self, client: AsyncClient):
        resp = await client.post("/api/v1/alert-rules", json={
            "name": "bad", "metric": "network", "threshold": 120,
        })
        assert resp.status_code == 422

    async def test_duplicate_step_levels(self, client: AsyncClient):
        resp = await client.post("/api/v1/alert-rules", json={
            "name": "dup", "metric": "disk", "threshold": 80,
            "steps": [{"level": 1, "action": "notify_user"}, {"level": 1, "action": "scale_up"}],
        })
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"

    async def test_update_and_delete(self, client: AsyncClient, memory_rule):
        resp = await client.put(f"/api/v1/alert-rules/{memory_rule.id}", json={"threshold": 85.0})
        assert resp.status_code == 200
        assert resp.json()["threshold"] == 85.0
        assert resp.json()["name"] == "High memory"

        resp = await client.delete(f"/api/v1/alert-rules/{memory_rule.id}")
        assert resp.status_code == 204
        resp = await client.get(f"/api/v1/alert-rules/{memory_rule.id}")
        assert resp.status_code == 404

    async def test_update_rejects_null_for_required_fields(self, client: AsyncClient, memory_rule):
        url = f"/api/v1/alert-rules/{memory_rule.id}"
        for field in ("threshold", "is_enabled", "metric"):
            resp = await client.put(url, json={field: None})
            assert resp.status_code == 422, field
        resp = await client.get(url)
        assert resp.json()["threshold"] == 90.0
        assert resp.json()["is_enabled"] is True

        resp = await client.put(url, json={"description": None})
        assert resp.status_code == 200
        assert resp.json()["description"] is None

    async def test_not_found_shape(self, client: AsyncClient):
        resp = await client.get("/api/v1/alert-rules/99999")
        assert resp.status_code == 404
        assert resp.json() == {
            "error": "not_found",
            "message": "Alert rule not found",
            "detail": "rule_id=99999",
            "status_code": 404,
        }

    async def test_step_endpoints(self, client: AsyncClient, memory_rule):
        base = f"/api/v1/alert-rules/{memory_rule.id}/steps"
        resp = await client.post(base, json={"level": 2, "action": "scale_up", "delay_minutes": 30})
        assert resp.status_code == 201
        step_id = resp.json()["id"]

        resp = await client.post(base, json={"level": 2, "action": "notify_user"})
        assert resp.status_code == 409

        resp = await client.put(f"{base}/{step_id}", json={"delay_minutes": 5})
        assert resp.json()["delay_minutes"] == 5
        assert [s["level"] for s in (await client.get(base)).json()] == [2]

        assert (await client.delete(f"{base}/{step_id}")).status_code == 204
        assert (await client.get(base)).json() == []

    async def test_test_rule_respects_cooldown(self, client: AsyncClient, memory_rule, clock):
        url = f"/api/v1/alert-rules/{memory_rule.id}/test"
        resp = await client.post(url)
        assert resp.status_code == 201
        assert resp.json()["is_test"] is True
        assert resp.json()["value"] == 90.0
        assert resp.json()["message"].startswith("[TEST]")

        resp = await client.post(url, json={"value": 99})
        assert resp.status_code == 409
        assert resp.json()["error"] == "conflict"

        clock.advance(minutes=6)
        resp = await client.post(url, json={"value": 99})
        assert resp.status_code == 201
        assert resp.json()["value"] == 99.0

    async def test_check_rule(self, client: AsyncClient, memory_rule, probe):
        probe.memory_percent = 95
        resp = await client.post(f"/api/v1/alert-rules/{memory_rule.id}/check")
        assert resp.status_code == 200
        assert resp.json()["status"] == "triggered"
        assert resp.json()["occurrence_id"] is not None

        resp = await client.post("/api/v1/alert-rules/99999/check")
        assert resp.status_code == 404


# ── Alerts ──

class TestAlerts:
    async def trigger(self, client: AsyncClient, probe) -> int:
        probe.memory_percent = 95
        resp = await client.post("/api/v1/alerts/check-all")
        assert resp.status_code == 200
        [alert_id] = resp.json()["occurrence_ids"]
        return alert_id

    async def test_check_all_summary(self, client: AsyncClient, memory_rule, probe):
        await self.trigger(client, probe)
        resp = await client.post("/api/v1/alerts/check-all")
        body = resp.json()
        assert body["suppressed"] == 1
        assert body["triggered"] == 0
        assert body["occurrence_ids"] == []

    async def test_list_and_get(self, client: AsyncClient, memory_rule, probe):
        alert_id = await self.trigger(client, probe)
        resp = await client.get("/api/v1/alerts", params={"status": "active"})
        assert [a["id"] for a in resp.json()] == [alert_id]
        assert (await client.get("/api/v1/alerts", params={"status": "resolved"})).json() == []
        assert (await client.get("/api/v1/alerts", params={"limit": 0})).status_code == 422

        resp = await client.get(f"/api/v1/alerts/{alert_id}")
        assert resp.json()["severity"] == "medium"
        assert resp.json()["threshold"] == 90.0
        assert (await client.get("/api/v1/alerts/99999")).status_code == 404

    async def test_acknowledge_and_resolve(self, client: AsyncClient, memory_rule, probe, operator_user):
        alert_id = await self.trigger(client, probe)
        user = {"user_id": operator_user.id}

        resp = await client.post(f"/api/v1/alerts/{alert_id}/acknowledge", json=user)
        assert resp.status_code == 200
        assert resp.json()["status"] == "acknowledged"
        assert (await client.get("/api/v1/alerts/active")).json() == []

        resp = await client.post(f"/api/v1/alerts/{alert_id}/resolve", json=user)
        assert resp.json()["status"] == "resolved"
        assert resp.json()["resolved_by"] == operator_user.id

        resp = await client.post(f"/api/v1/alerts/{alert_id}/acknowledge", json=user)
        assert resp.status_code == 409

    async def test_notifications_and_resend(self, client: AsyncClient, make_rule, probe, adapters, operator_user):
        await make_rule(steps=[{
            "level": 1, "action": "notify_user", "notification_channel": "chat",
            "target_users": [operator_user.id],
        }])
        adapters[Channel.CHAT].error = RuntimeError("telegram down")
        alert_id = await self.trigger(client, probe)

        [intent] = (await client.get(f"/api/v1/alerts/{alert_id}/notifications")).json()
        assert intent["status"] == "failed"
        assert intent["channel"] == "chat"

        adapters[Channel.CHAT].error = None
        resp = await client.post(f"/api/v1/alerts/notifications/{intent['id']}/resend")
        assert resp.status_code == 200
        assert resp.json()["status"] == "sent"
        assert adapters[Channel.CHAT].sent[0].target == "2002"

        resp = await client.post(f"/api/v1/alerts/notifications/{intent['id']}/resend")
        assert resp.status_code == 409
        resp = await client.post("/api/v1/alerts/notifications/99999/resend")
        assert resp.status_code == 404

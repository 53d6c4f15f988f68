"""API tests for quotes and agent pricing configuration."""

from __future__ import annotations

from tests.conftest import auth


class TestCalculate:
    def test_flat_quote(self, client, tree):
        r = client.post("/pricing/calculate", headers=auth(tree.root), json={"word_count": 1000})
        assert r.status_code == 200
        body = r.json()
        assert body["pricing_model"] == "flat"
        assert float(body["total_cost"]) == 55.0
        assert body["fee_splits"] is None

    def test_agent_quote(self, client, tree):
        r = client.post(
            "/pricing/calculate",
            headers=auth(tree.agent_a),
            json={"word_count": 1000, "agent_id": tree.agent_a.id},
        )
        body = r.json()
        assert float(body["base_cost"]) == 12.5
        assert float(body["fee_splits"]["agent_fee"]) == 1.88
        assert float(body["total_cost"]) == 14.38

    def test_client_quote_uses_its_agent(self, client, tree):
        r = client.post(
            "/pricing/calculate",
            headers=auth(tree.client_a),
            json={"word_count": 1000, "client_id": tree.client_a.id},
        )
        body = r.json()
        assert float(body["total_cost"]) == 14.38
        assert float(body["fee_splits"]["client_total"]) == 14.38
        assert set(body["fee_splits"]) == {"client_total"}

    def test_worker_quote_has_no_money(self, client, tree):
        r = client.post("/pricing/calculate", headers=auth(tree.worker_a), json={"word_count": 1000})
        assert r.status_code == 200
        body = r.json()
        assert body["word_count"] == 1000
        for key in ("base_cost", "urgency_charge", "total_cost"):
            assert key not in body
        assert body["fee_splits"] is None

    def test_super_worker_flat_quote_keeps_price(self, client, tree):
        body = client.post("/pricing/calculate", headers=auth(tree.lead_a), json={"word_count": 1000}).json()
        assert float(body["total_cost"]) == 55.0
        assert body["fee_splits"] is None

    def test_super_agent_sees_every_split(self, client, tree):
        body = client.post(
            "/pricing/calculate",
            headers=auth(tree.root),
            json={"word_count": 1000, "agent_id": tree.agent_a.id},
        ).json()
        assert set(body["fee_splits"]) == {"agent_fee", "super_worker_fee", "worker_fee", "client_total", "system_total"}
        assert float(body["fee_splits"]["system_total"]) == 39.38

    def test_foreign_agent_rate_hidden(self, client, tree):
        r = client.post(
            "/pricing/calculate",
            headers=auth(tree.client_b),
            json={"word_count": 1000, "agent_id": tree.agent_a.id},
        )
        assert r.status_code == 403

    def test_out_of_range(self, client, tree):
        r = client.post("/pricing/calculate", headers=auth(tree.root), json={"word_count": 25000})
        assert r.status_code == 400
        assert r.json()["code"] == "VALIDATION_ERROR"


class TestAgentConfig:
    payload = {
        "min_word_count": 500,
        "max_word_count": 10000,
        "base_rate_per_500_words": "8.00",
        "agent_fee_percentage": "30",
        "change_reason": "new season",
    }

    def test_agent_updates_own_rate(self, client, tree):
        r = client.put(f"/pricing/agents/{tree.agent_a.id}", headers=auth(tree.agent_a), json=self.payload)
        assert r.status_code == 200
        body = r.json()
        assert float(body["config"]["base_rate_per_500_words"]) == 8.0
        assert len(body["warnings"]) == 1

        current = client.get(f"/pricing/agents/{tree.agent_a.id}", headers=auth(tree.agent_a)).json()
        assert float(current["agent_fee_percentage"]) == 30.0

        history = client.get(f"/pricing/agents/{tree.agent_a.id}/history", headers=auth(tree.root)).json()
        assert len(history) == 1

    def test_client_sees_bounds_not_rate(self, client, tree):
        client.put(f"/pricing/agents/{tree.agent_a.id}", headers=auth(tree.agent_a), json=self.payload)
        r = client.get(f"/pricing/agents/{tree.agent_a.id}", headers=auth(tree.client_a))
        assert r.status_code == 200
        body = r.json()
        assert body["min_word_count"] == 500
        assert "agent_fee_percentage" not in body
        assert "base_rate_per_500_words" not in body

    def test_super_agent_sees_rate(self, client, tree):
        client.put(f"/pricing/agents/{tree.agent_a.id}", headers=auth(tree.agent_a), json=self.payload)
        body = client.get(f"/pricing/agents/{tree.agent_a.id}", headers=auth(tree.root)).json()
        assert float(body["agent_fee_percentage"]) == 30.0

    def test_worker_and_super_worker_cannot_read_rate(self, client, tree):
        for user in (tree.worker_a, tree.lead_a):
            r = client.get(f"/pricing/agents/{tree.agent_a.id}", headers=auth(user))
            assert r.status_code == 403

    def test_other_agent_cannot_update(self, client, tree):
        r = client.put(f"/pricing/agents/{tree.agent_a.id}", headers=auth(tree.agent_b), json=self.payload)
        assert r.status_code == 403

    def test_default_rate_before_any_config(self, client, tree):
        body = client.get(f"/pricing/agents/{tree.agent_a.id}", headers=auth(tree.agent_a)).json()
        assert body["is_default"] is True

    def test_validate_config(self, client, tree):
        bad = dict(self.payload, min_word_count=20000, max_word_count=500)
        body = client.post("/pricing/validate-config", headers=auth(tree.agent_a), json=bad).json()
        assert body["valid"] is False
        assert body["errors"]

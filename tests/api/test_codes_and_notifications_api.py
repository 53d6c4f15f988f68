"""API tests for reference codes and notifications."""

from __future__ import annotations

from tests.conftest import auth


class TestReferenceCodes:
    def test_validate_is_public(self, client, tree):
        mine = client.get("/reference-codes/mine", headers=auth(tree.agent_a)).json()
        code = mine[0]["code"]

        body = client.post("/reference-codes/validate", json={"code": code.lower()}).json()
        assert body["valid"] is True
        assert body["registrant_role"] == "client"
        assert body["owner_name"] == "Agent A"

    def test_generate_and_manage(self, client, tree):
        r = client.post(
            "/reference-codes/generate",
            headers=auth(tree.root),
            json={"code_type": "client_recruitment", "prefix": "promo"},
        )
        assert r.status_code == 201
        row = r.json()
        assert row["code"].startswith("PROMO-")

        off = client.patch(f"/reference-codes/{row['id']}/deactivate", headers=auth(tree.root)).json()
        assert off["is_active"] is False
        check = client.post("/reference-codes/validate", json={"code": row["code"]}).json()
        assert check["reason"] == "inactive"

        pair = client.post(f"/reference-codes/{row['id']}/regenerate", headers=auth(tree.root)).json()
        assert pair["new"]["code"].startswith("PROMO-")

    def test_worker_cannot_generate(self, client, tree):
        r = client.post(
            "/reference-codes/generate",
            headers=auth(tree.worker_a),
            json={"code_type": "worker_recruitment"},
        )
        assert r.status_code == 403

    def test_foreign_code_is_forbidden(self, client, tree):
        code_id = client.get("/reference-codes/mine", headers=auth(tree.agent_a)).json()[0]["id"]
        r = client.patch(f"/reference-codes/{code_id}/deactivate", headers=auth(tree.agent_b))
        assert r.status_code == 403
        assert client.get(f"/reference-codes/{code_id}/stats", headers=auth(tree.root)).status_code == 200


class TestNotifications:
    def test_send_partial(self, client, tree):
        r = client.post(
            "/notifications/send",
            headers=auth(tree.lead_a),
            json={"user_ids": [tree.worker_a.id, tree.worker_b.id], "title": "Deadline", "body": "Friday"},
        )
        body = r.json()
        assert body["sent"] == 1
        assert body["sent_to"] == [tree.worker_a.id]
        assert body["results"][1]["error"] == "Permission denied: Cannot send notification to this user"

    def test_inbox_and_mark_read(self, client, tree):
        client.post("/notifications/broadcast", headers=auth(tree.root), json={"title": "Hi", "body": "All"})

        inbox = client.get("/notifications/mine?unread_only=true", headers=auth(tree.worker_b)).json()
        assert len(inbox) == 1
        assert inbox[0]["title"] == "Hi"

        updated = client.put("/notifications/mark-read", headers=auth(tree.worker_b), json={}).json()
        assert updated == {"updated": 1}
        assert client.get("/notifications/mine?unread_only=true", headers=auth(tree.worker_b)).json() == []

    def test_empty_recipients_is_422(self, client, tree):
        r = client.post(
            "/notifications/send",
            headers=auth(tree.root),
            json={"user_ids": [], "title": "x", "body": "y"},
        )
        assert r.status_code == 422

"""Tests for hierarchy-scoped notifications."""

from __future__ import annotations

import pytest

from marketplace.services import notifications as nt
from marketplace.services.errors import ValidationError
from tests.conftest import as_actor


class TestCanSend:
    def test_rules(self, session, tree):
        cases = [
            (tree.root, tree.worker_b, True),
            (tree.agent_a, tree.client_a, True),
            (tree.agent_a, tree.worker_a, False),
            (tree.agent_a, tree.client_b, False),
            (tree.lead_a, tree.worker_a, True),
            (tree.lead_a, tree.worker_b, False),
            (tree.worker_a, tree.lead_a, False),
            (tree.client_a, tree.agent_a, False),
            (tree.worker_a, tree.worker_a, True),
        ]
        for sender, target, expected in cases:
            got = nt.can_send_notification(session, as_actor(sender), target)
            assert got is expected, (sender.full_name, target.full_name)


class TestSend:
    def test_partial_success_keeps_order(self, session, tree):
        results = nt.send_notifications(
            session,
            as_actor(tree.agent_a),
            [tree.client_b.id, tree.client_a.id, 9999],
            "Hello",
            "Your draft is ready",
        )
        assert [r.user_id for r in results] == [tree.client_b.id, tree.client_a.id, 9999]
        assert [r.success for r in results] == [False, True, False]
        assert results[0].error == nt.PERMISSION_DENIED_MESSAGE
        assert results[1].notification_id is not None
        assert results[2].error == "User not found"

        inbox = nt.list_notifications(session, tree.client_a.id)
        assert len(inbox) == 1
        assert inbox[0].sender_id == tree.agent_a.id
        assert inbox[0].sender_hierarchy_level == 2
        assert nt.list_notifications(session, tree.client_b.id) == []

    def test_duplicates_collapse(self, session, tree):
        results = nt.send_notifications(
            session, as_actor(tree.root), [tree.worker_a.id, tree.worker_a.id], "Hi", "There"
        )
        assert len(results) == 1

    @pytest.mark.parametrize("title,body,targets", [("", "x", [1]), ("x", "  ", [1]), ("x", "y", [])])
    def test_validation(self, session, tree, title, body, targets):
        with pytest.raises(ValidationError):
            nt.send_notifications(session, as_actor(tree.root), targets, title, body)


class TestBroadcast:
    def test_agent_reaches_clients_only(self, session, tree):
        results = nt.broadcast(session, as_actor(tree.agent_a), "News", "Office closed Friday")
        assert [r.user_id for r in results] == [tree.client_a.id]

    def test_super_agent_without_clients(self, session, tree):
        results = nt.broadcast(session, as_actor(tree.root), "News", "Body", include_clients=False)
        ids = {r.user_id for r in results}
        assert tree.client_a.id not in ids
        assert {tree.agent_a.id, tree.lead_b.id, tree.worker_a.id} <= ids
        assert all(r.success for r in results)

    def test_worker_has_nobody(self, session, tree):
        assert nt.broadcast(session, as_actor(tree.worker_a), "News", "Body") == []


class TestInbox:
    def test_mark_read(self, session, tree):
        nt.send_notifications(session, as_actor(tree.root), [tree.worker_a.id], "One", "1")
        nt.send_notifications(session, as_actor(tree.root), [tree.worker_a.id], "Two", "2")
        inbox = nt.list_notifications(session, tree.worker_a.id, unread_only=True)
        assert len(inbox) == 2

        assert nt.mark_read(session, tree.worker_a.id, [inbox[0].id]) == 1
        assert len(nt.list_notifications(session, tree.worker_a.id, unread_only=True)) == 1

        assert nt.mark_read(session, tree.worker_a.id) == 1
        assert nt.list_notifications(session, tree.worker_a.id, unread_only=True) == []

    def test_cannot_mark_someone_elses(self, session, tree):
        [result] = nt.send_notifications(session, as_actor(tree.root), [tree.worker_a.id], "One", "1")
        assert nt.mark_read(session, tree.worker_b.id, [result.notification_id]) == 0

    def test_limit(self, session, tree):
        for i in range(3):
            nt.send_notifications(session, as_actor(tree.root), [tree.worker_a.id], f"N{i}", "body")
        assert len(nt.list_notifications(session, tree.worker_a.id, limit=2)) == 2

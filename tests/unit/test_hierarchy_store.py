"""Tests for moves, placement and reads against the hierarchy store."""

from __future__ import annotations

import pytest
from sqlmodel import select

from marketplace.models.user import UserRole
from marketplace.models.user_hierarchy import HierarchyChangeLog, UserHierarchy
from marketplace.services import hierarchy_engine as he
from marketplace.services.errors import CodeSpaceExhausted, ErrorCode, HierarchyViolation, NotFound, PermissionDenied
from tests.conftest import as_actor, make_user


def _row(session, user) -> UserHierarchy:
    session.expire_all()
    return he.get_hierarchy_row(session, user.id)


class TestTraversal:
    def test_ancestors_nearest_first(self, session, tree):
        assert he.get_ancestor_ids(session, tree.worker_a.id) == [tree.lead_a.id, tree.agent_a.id, tree.root.id]

    def test_descendant_depths(self, session, tree):
        depths = he.get_descendant_depths(session, tree.agent_a.id)
        assert depths == {tree.lead_a.id: 1, tree.client_a.id: 1, tree.worker_a.id: 2}

    def test_descendants_limited_by_levels(self, session, tree):
        assert he.get_descendant_ids(session, tree.agent_a.id, max_levels=1) == sorted(
            [tree.lead_a.id, tree.client_a.id]
        )

    def test_is_subordinate(self, session, tree):
        assert he.is_subordinate(session, tree.agent_a.id, tree.worker_a.id)
        assert not he.is_subordinate(session, tree.agent_a.id, tree.worker_b.id)
        assert not he.is_subordinate(session, tree.worker_a.id, tree.worker_a.id)

    def test_cycle_detection(self, session, tree):
        assert he.would_create_cycle(session, tree.agent_a.id, tree.worker_a.id)
        assert he.would_create_cycle(session, tree.agent_a.id, tree.agent_a.id)
        assert not he.would_create_cycle(session, tree.lead_a.id, tree.agent_b.id)


class TestPlacement:
    def test_standard_tree_levels(self, session, tree):
        assert _row(session, tree.root).hierarchy_level == 1
        assert _row(session, tree.root).super_agent_id == tree.root.id
        assert _row(session, tree.agent_a).hierarchy_level == 2
        assert _row(session, tree.lead_a).hierarchy_level == 3
        assert _row(session, tree.worker_a).hierarchy_level == 4
        assert _row(session, tree.worker_a).super_agent_id == tree.root.id

    def test_placement_rejects_bad_parent_role(self, session, tree):
        with pytest.raises(HierarchyViolation):
            make_user(session, tree.root, "Bad Worker", UserRole.WORKER, tree.agent_a)

    def test_failed_placement_leaves_no_user(self, session, tree):
        with pytest.raises(HierarchyViolation):
            make_user(session, tree.root, "Bad Client", UserRole.CLIENT, tree.worker_a)
        from marketplace.models.user import User

        assert session.exec(select(User).where(User.email == "bad.client@example.com")).first() is None

    def test_failed_code_issue_leaves_no_user(self, session, tree, monkeypatch):
        from marketplace.models.reference_code import ReferenceCode
        from marketplace.models.user import User
        from marketplace.services import reference_codes as rc

        taken = rc.list_codes(session, tree.agent_a.id)[0].code
        monkeypatch.setattr(rc, "_random_code", lambda prefix: taken)
        codes_before = len(session.exec(select(ReferenceCode)).all())
        rows_before = len(session.exec(select(UserHierarchy)).all())

        with pytest.raises(CodeSpaceExhausted):
            make_user(session, tree.root, "Agent C", UserRole.AGENT, tree.root)

        assert session.exec(select(User).where(User.email == "agent.c@example.com")).first() is None
        assert len(session.exec(select(UserHierarchy)).all()) == rows_before
        assert len(session.exec(select(ReferenceCode)).all()) == codes_before


class TestMove:
    def test_only_super_agent_can_move(self, session, tree):
        with pytest.raises(PermissionDenied):
            he.move_user(session, as_actor(tree.agent_a), tree.client_a.id, tree.agent_b.id)

    def test_missing_user_raises_not_found(self, session, tree):
        with pytest.raises(NotFound):
            he.move_user(session, as_actor(tree.root), 9999, tree.agent_b.id)

    def test_self_parent_rejected(self, session, tree):
        result = he.move_user(session, as_actor(tree.root), tree.agent_a.id, tree.agent_a.id)
        assert not result.success
        assert result.code == ErrorCode.CIRCULAR_REFERENCE

    def test_move_under_own_descendant_rejected(self, session, tree):
        result = he.move_user(session, as_actor(tree.root), tree.agent_a.id, tree.lead_a.id)
        assert not result.success
        assert result.code == ErrorCode.CIRCULAR_REFERENCE
        assert _row(session, tree.agent_a).parent_id == tree.root.id

    def test_invalid_role_pair_rejected(self, session, tree):
        result = he.move_user(session, as_actor(tree.root), tree.worker_a.id, tree.agent_b.id)
        assert not result.success
        assert result.code == ErrorCode.INVALID_HIERARCHY_MOVE
        assert "Valid parent roles: super_worker" in result.message

    def test_no_change(self, session, tree):
        result = he.move_user(session, as_actor(tree.root), tree.lead_a.id, tree.agent_a.id)
        assert not result.success
        assert result.code == ErrorCode.NO_CHANGE_NEEDED
        assert result.message == "Lead A is already under Agent A."

    def test_inactive_user_rejected(self, session, tree):
        tree.client_a.is_active = False
        session.add(tree.client_a)
        session.commit()
        result = he.move_user(session, as_actor(tree.root), tree.client_a.id, tree.agent_b.id)
        assert result.code == ErrorCode.USER_INACTIVE

    def test_inactive_parent_rejected(self, session, tree):
        tree.agent_b.is_active = False
        session.add(tree.agent_b)
        session.commit()
        result = he.move_user(session, as_actor(tree.root), tree.client_a.id, tree.agent_b.id)
        assert result.code == ErrorCode.PARENT_INACTIVE

    def test_successful_move_writes_audit_row(self, session, tree):
        result = he.move_user(session, as_actor(tree.root), tree.lead_a.id, tree.agent_b.id)
        assert result.success
        assert result.old_parent_id == tree.agent_a.id
        assert result.new_parent_id == tree.agent_b.id
        assert result.new_level == 3
        assert result.descendants_updated == 1

        row = _row(session, tree.lead_a)
        assert row.parent_id == tree.agent_b.id
        assert row.hierarchy_level == 3

        logs = session.exec(select(HierarchyChangeLog).where(HierarchyChangeLog.user_id == tree.lead_a.id)).all()
        assert len(logs) == 1
        assert logs[0].changed_by == tree.root.id
        assert logs[0].change_reason == "Hierarchy restructure"
        assert logs[0].old_parent_id == tree.agent_a.id

    def test_reason_is_recorded(self, session, tree):
        he.move_user(session, as_actor(tree.root), tree.client_a.id, tree.agent_b.id, "Account handover")
        log = he.list_changes(session, tree.client_a.id)[0]
        assert log.change_reason == "Account handover"

    def test_move_relevels_subtree(self, session, tree):
        # A super worker placed straight under the root sits at level 2.
        lead = make_user(session, tree.root, "Direct Lead", UserRole.SUPER_WORKER, tree.root)
        worker = make_user(session, tree.root, "Direct Worker", UserRole.WORKER, lead)
        assert _row(session, worker).hierarchy_level == 3

        result = he.move_user(session, as_actor(tree.root), lead.id, tree.agent_a.id)
        assert result.success
        assert result.old_level == 2
        assert result.new_level == 3
        assert _row(session, lead).hierarchy_level == 3
        assert _row(session, worker).hierarchy_level == 4

    def test_move_across_trees_updates_root(self, session, tree):
        other_root = make_user(session, None, "Other Root", UserRole.SUPER_AGENT)
        other_agent = make_user(session, other_root, "Other Agent", UserRole.AGENT, other_root)

        result = he.move_user(session, as_actor(tree.root), tree.lead_a.id, other_agent.id)
        assert result.success
        assert _row(session, tree.lead_a).super_agent_id == other_root.id
        assert _row(session, tree.worker_a).super_agent_id == other_root.id

    def test_subtree_depth_limit(self, session, tree):
        # lead_a lands on level 3, but worker_a would need level 4.
        result = he.move_user(session, as_actor(tree.root), tree.lead_a.id, tree.agent_b.id, max_depth=3)
        assert not result.success
        assert result.code == ErrorCode.MAX_DEPTH_EXCEEDED
        assert _row(session, tree.lead_a).parent_id == tree.agent_a.id


class TestReads:
    def test_path_to_root(self, session, tree):
        path = he.get_path_to_root(session, tree.worker_a.id)
        assert [p["user_id"] for p in path] == [tree.root.id, tree.agent_a.id, tree.lead_a.id, tree.worker_a.id]

    def test_network(self, session, tree):
        members = he.get_network(session, tree.agent_b.id)
        assert [m["user_id"] for m in members][-1] == tree.worker_b.id
        assert {m["relative_depth"] for m in members} == {1, 2}

    def test_tree(self, session, tree):
        t = he.get_tree(session, tree.root.id)
        assert t["user_id"] == tree.root.id
        assert sorted(c["user_id"] for c in t["children"]) == sorted([tree.agent_a.id, tree.agent_b.id])

    def test_tree_requires_super_agent_root(self, session, tree):
        with pytest.raises(HierarchyViolation):
            he.get_tree(session, tree.agent_a.id)

    def test_statistics(self, session, tree):
        stats = he.get_statistics(session, tree.root.id)
        assert stats["direct_reports"] == 2
        assert stats["total_network"] == 8
        assert stats["by_role"]["worker"] == 2
        assert stats["by_depth"] == {1: 2, 2: 4, 3: 2}

    def test_can_view_user(self, session, tree):
        assert he.can_view_user(session, as_actor(tree.agent_a), tree.worker_a.id)
        assert not he.can_view_user(session, as_actor(tree.agent_a), tree.worker_b.id)
        assert he.can_view_user(session, as_actor(tree.root), tree.worker_b.id)


class TestIntegrity:
    def test_clean_tree(self, session, tree):
        report = he.check_integrity(session)
        assert report.ok
        assert report.checked == 9

    def test_level_mismatch_reported(self, session, tree):
        row = _row(session, tree.worker_a)
        row.hierarchy_level = 2
        session.add(row)
        session.commit()
        report = he.check_integrity(session)
        assert not report.ok
        assert tree.worker_a.id in report.level_mismatches

    def test_cycle_reported_in_memory(self):
        nodes = [
            he.HierarchyNode(1, UserRole.SUPER_AGENT, None, 1, 1),
            he.HierarchyNode(2, UserRole.AGENT, 3, 2, 1),
            he.HierarchyNode(3, UserRole.SUPER_WORKER, 2, 3, 1),
        ]
        report = he.HierarchyGraph(nodes).integrity_report()
        assert report.cycles == [[2, 3]]

    def test_orphan_reported_in_memory(self):
        nodes = [he.HierarchyNode(5, UserRole.CLIENT, None, 3, 1)]
        report = he.HierarchyGraph(nodes).integrity_report()
        assert report.orphans == [5]

"""Unit tests for the pure hierarchy move validator."""

from __future__ import annotations

import itertools

import pytest

from marketplace.models.user import UserRole
from marketplace.services.errors import ErrorCode
from marketplace.services.hierarchy_engine import ALLOWED_PARENT_ROLES, validate_move


ALLOWED_PAIRS = {
    (UserRole.AGENT, UserRole.SUPER_AGENT),
    (UserRole.SUPER_WORKER, UserRole.AGENT),
    (UserRole.WORKER, UserRole.SUPER_WORKER),
    (UserRole.CLIENT, UserRole.AGENT),
}


class TestRoleRules:
    """Role pair allow-list."""

    def test_allow_list_matches_policy_table(self):
        table_pairs = {(child, parent) for child, parents in ALLOWED_PARENT_ROLES.items() for parent in parents}
        assert table_pairs == ALLOWED_PAIRS

    @pytest.mark.parametrize("user_role,parent_role", sorted(ALLOWED_PAIRS))
    def test_allowed_pairs_are_valid(self, user_role, parent_role):
        result = validate_move(user_role, parent_role, 3, 2)
        assert result.valid
        assert result.new_level == 3
        assert result.code is None

    def test_every_other_pair_is_rejected(self):
        for user_role, parent_role in itertools.product(UserRole, UserRole):
            if (user_role, parent_role) in ALLOWED_PAIRS:
                continue
            result = validate_move(user_role, parent_role, 2, 1)
            assert not result.valid, (user_role, parent_role)

    def test_super_agent_never_moves(self):
        for parent_role in UserRole:
            result = validate_move(UserRole.SUPER_AGENT, parent_role, 1, 1)
            assert not result.valid
            assert result.message == "Super Agents cannot be moved in the hierarchy."

    def test_rejection_lists_valid_parent_roles(self):
        result = validate_move(UserRole.WORKER, UserRole.AGENT, 4, 2)
        assert not result.valid
        assert result.code == ErrorCode.INVALID_HIERARCHY_MOVE
        assert "A worker cannot be placed under a agent" in result.message
        assert "Valid parent roles: super_worker" in result.message

    def test_accepts_plain_strings(self):
        assert validate_move("client", "agent", 3, 2).valid


class TestDepth:
    """Depth limit (root = level 1, max 5)."""

    @pytest.mark.parametrize("parent_level", [1, 2, 3, 4])
    def test_new_level_is_parent_plus_one(self, parent_level):
        result = validate_move(UserRole.CLIENT, UserRole.AGENT, None, parent_level)
        assert result.valid
        assert result.new_level == parent_level + 1
        assert result.new_level <= 5

    def test_level_six_is_rejected(self):
        result = validate_move(UserRole.WORKER, UserRole.SUPER_WORKER, 4, 5)
        assert not result.valid
        assert result.code == ErrorCode.MAX_DEPTH_EXCEEDED
        assert result.message == "This move would exceed the maximum hierarchy depth of 5 levels."

    def test_custom_max_depth(self):
        assert not validate_move(UserRole.WORKER, UserRole.SUPER_WORKER, 4, 3, max_depth=3).valid
        assert validate_move(UserRole.WORKER, UserRole.SUPER_WORKER, 4, 2, max_depth=3).valid

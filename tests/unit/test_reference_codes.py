"""Tests for reference code issuing, validation and code-driven registration."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from marketplace.models.reference_code import CodeType
from marketplace.models.user import UserRole
from marketplace.services import reference_codes as rc
from marketplace.services.errors import CodeSpaceExhausted, PermissionDenied, ValidationError
from marketplace.services.hierarchy_engine import get_hierarchy_row
from marketplace.services.registration import register_with_code
from tests.conftest import as_actor


def _code_for(session, owner, code_type):
    rows = [r for r in rc.list_codes(session, owner.id, include_inactive=False) if CodeType(r.code_type) == code_type]
    assert rows, f"no active {code_type.value} code for {owner.full_name}"
    return rows[0]


class TestDefaults:
    def test_roles_get_their_codes(self, session, tree):
        root_types = {CodeType(r.code_type) for r in rc.list_codes(session, tree.root.id)}
        assert root_types == {CodeType.AGENT_RECRUITMENT, CodeType.CLIENT_RECRUITMENT}

        agent_types = {CodeType(r.code_type) for r in rc.list_codes(session, tree.agent_a.id)}
        assert agent_types == {CodeType.CLIENT_RECRUITMENT}

        lead_types = {CodeType(r.code_type) for r in rc.list_codes(session, tree.lead_a.id)}
        assert lead_types == {CodeType.WORKER_RECRUITMENT}

        assert rc.list_codes(session, tree.worker_a.id) == []
        assert rc.list_codes(session, tree.client_a.id) == []

    def test_code_format(self, session, tree):
        code = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT)
        assert code.code.startswith("AGT-CLI-")
        assert rc.CODE_RE.match(code.code)


class TestGenerate:
    def test_generated_code_validates(self, session, tree):
        row = rc.generate(session, tree.lead_a.id, "worker_recruitment")
        check = rc.validate(session, row.code)
        assert check.valid
        assert check.owner_id == tree.lead_a.id
        assert check.registrant_role == "worker"

    def test_enum_member_accepted(self, session, tree):
        assert rc.parse_code_type(CodeType.AGENT_RECRUITMENT) is CodeType.AGENT_RECRUITMENT
        row = rc.generate(session, tree.root.id, CodeType.AGENT_RECRUITMENT)
        assert CodeType(row.code_type) == CodeType.AGENT_RECRUITMENT
        assert rc.validate(session, row.code).registrant_role == "agent"

    def test_codes_are_unique(self, session, tree):
        codes = {rc.generate(session, tree.root.id, CodeType.CLIENT_RECRUITMENT).code for _ in range(10)}
        assert len(codes) == 10

    def test_custom_prefix(self, session, tree):
        row = rc.generate(session, tree.root.id, CodeType.AGENT_RECRUITMENT, "vip")
        assert row.code.startswith("VIP-")

    def test_bad_prefix(self, session, tree):
        with pytest.raises(ValidationError):
            rc.generate(session, tree.root.id, CodeType.AGENT_RECRUITMENT, "a b c")

    def test_role_cannot_issue_type(self, session, tree):
        with pytest.raises(PermissionDenied):
            rc.generate(session, tree.agent_a.id, CodeType.AGENT_RECRUITMENT)
        with pytest.raises(PermissionDenied):
            rc.generate(session, tree.worker_a.id, CodeType.WORKER_RECRUITMENT)

    def test_collision_is_retried(self, session, tree, monkeypatch):
        taken = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT).code
        fresh = "AGT-CLI-0000BEEF"
        candidates = iter([taken, taken, fresh])
        monkeypatch.setattr(rc, "_random_code", lambda prefix: next(candidates))

        row = rc.generate(session, tree.agent_a.id, CodeType.CLIENT_RECRUITMENT)
        assert row.code == fresh

    def test_exhaustion(self, session, tree, monkeypatch):
        taken = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT).code
        monkeypatch.setattr(rc, "_random_code", lambda prefix: taken)

        with pytest.raises(CodeSpaceExhausted):
            rc.generate(session, tree.agent_a.id, CodeType.CLIENT_RECRUITMENT, max_attempts=3)


class TestValidate:
    def test_normalizes_input(self, session, tree):
        code = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT).code
        check = rc.validate(session, f"  {code.lower()} ")
        assert check.valid
        assert check.code == code

    @pytest.mark.parametrize("raw", ["", None, "nope", "AGT-CLI-XYZ"])
    def test_malformed(self, session, raw):
        assert rc.validate(session, raw).reason == rc.REASON_INVALID

    def test_not_found(self, session, tree):
        assert rc.validate(session, "AGT-CLI-DEADBEEF").reason == rc.REASON_NOT_FOUND

    def test_deactivated(self, session, tree):
        row = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT)
        rc.deactivate(session, as_actor(tree.agent_a), row.id)
        assert rc.validate(session, row.code).reason == rc.REASON_INACTIVE

        rc.reactivate(session, as_actor(tree.agent_a), row.id)
        assert rc.validate(session, row.code).valid

    def test_inactive_owner(self, session, tree):
        row = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT)
        tree.agent_a.is_active = False
        session.add(tree.agent_a)
        session.commit()
        assert rc.validate(session, row.code).reason == rc.REASON_INACTIVE

    def test_expired(self, session, tree):
        row = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT)
        row.expires_at = datetime.now(timezone.utc) + timedelta(days=1)
        session.add(row)
        session.commit()
        assert rc.validate(session, row.code).valid
        later = datetime.now(timezone.utc) + timedelta(days=2)
        assert rc.validate(session, row.code, now=later).reason == rc.REASON_EXPIRED


class TestOwnerOperations:
    def test_only_owner_may_deactivate(self, session, tree):
        row = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT)
        with pytest.raises(PermissionDenied):
            rc.deactivate(session, as_actor(tree.agent_b), row.id)

    def test_regenerate(self, session, tree):
        row = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT)
        old, new = rc.regenerate(session, as_actor(tree.agent_a), row.id)
        assert not old.is_active
        assert old.deactivated_at is not None
        assert new.is_active
        assert new.code.startswith("AGT-CLI-")
        assert new.code != old.code

    def test_stats_count_registrations(self, session, tree):
        row = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT)
        register_with_code(session, full_name="New Client", email="new@example.com", reference_code=row.code)

        stats = rc.code_stats(session, as_actor(tree.agent_a), row.id)
        assert stats["total_registrations"] == 1
        assert stats["registrations_by_role"] == {"client": 1}

        # Super agents may read any code's stats.
        assert rc.code_stats(session, as_actor(tree.root), row.id)["code"] == row.code


class TestRegistration:
    def test_code_sets_role_and_parent(self, session, tree):
        row = _code_for(session, tree.lead_a, CodeType.WORKER_RECRUITMENT)
        reg = register_with_code(session, full_name="New Worker", email="NW@Example.com", reference_code=row.code)

        assert reg.user.role == UserRole.WORKER
        assert reg.user.email == "nw@example.com"
        assert reg.user.reference_code_used == row.code
        assert reg.hierarchy.parent_id == tree.lead_a.id
        assert reg.hierarchy.hierarchy_level == 4
        assert reg.codes == []

    def test_code_is_reusable(self, session, tree):
        row = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT)
        register_with_code(session, full_name="One", email="one@example.com", reference_code=row.code)
        register_with_code(session, full_name="Two", email="two@example.com", reference_code=row.code)
        assert rc.validate(session, row.code).valid

    def test_recruited_agent_gets_codes(self, session, tree):
        row = _code_for(session, tree.root, CodeType.AGENT_RECRUITMENT)
        reg = register_with_code(session, full_name="Agent C", email="c@example.com", reference_code=row.code)
        assert reg.user.role == UserRole.AGENT
        assert [CodeType(c.code_type) for c in reg.codes] == [CodeType.CLIENT_RECRUITMENT]
        assert get_hierarchy_row(session, reg.user.id).super_agent_id == tree.root.id

    def test_bad_code_rejected(self, session, tree):
        with pytest.raises(ValidationError) as exc:
            register_with_code(session, full_name="X", email="x@example.com", reference_code="AGT-CLI-DEADBEEF")
        assert exc.value.details == {"reason": "not_found"}

    def test_duplicate_email(self, session, tree):
        row = _code_for(session, tree.agent_a, CodeType.CLIENT_RECRUITMENT)
        with pytest.raises(ValidationError):
            register_with_code(session, full_name="Dup", email="CLIENT.A@example.com", reference_code=row.code)

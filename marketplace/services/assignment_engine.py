from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..models.assignment_history import AssignmentType, ProjectAssignmentHistory
from ..models.project import Project
from ..models.user import User, UserRole, utcnow
from .context import ActorContext
from .errors import DatabaseError, ErrorCode, MarketplaceError, NotFound, ValidationError
from .hierarchy_engine import get_descendant_ids, get_hierarchy_row, is_subordinate
from .projects import get_project

logger = logging.getLogger(__name__)


# -------------------------
# Policy tables
# -------------------------

# None = may assign anyone; empty tuple = may not assign at all.
ASSIGNABLE_ROLES: Dict[UserRole, Optional[Tuple[UserRole, ...]]] = {
    UserRole.SUPER_AGENT: None,
    UserRole.AGENT: (UserRole.CLIENT, UserRole.WORKER),
    UserRole.SUPER_WORKER: (UserRole.WORKER,),
    UserRole.WORKER: (),
    UserRole.CLIENT: (),
}

SLOT_COLUMNS: Dict[AssignmentType, str] = {
    AssignmentType.WORKER: "worker_id",
    AssignmentType.SUB_WORKER: "sub_worker_id",
    AssignmentType.AGENT: "agent_id",
    AssignmentType.SUB_AGENT: "sub_agent_id",
}

# Roles that normally fill a slot; used to list candidates.
SLOT_ROLES: Dict[AssignmentType, Tuple[UserRole, ...]] = {
    AssignmentType.WORKER: (UserRole.WORKER,),
    AssignmentType.SUB_WORKER: (UserRole.SUPER_WORKER,),
    AssignmentType.AGENT: (UserRole.AGENT,),
    AssignmentType.SUB_AGENT: (UserRole.AGENT,),
}

CLOSED_STATUSES = ("completed", "cancelled", "refunded")

_ROLE_NAMES = {
    UserRole.SUPER_AGENT: "Super Agent",
    UserRole.AGENT: "Agent",
    UserRole.SUPER_WORKER: "Super Worker",
    UserRole.WORKER: "Worker",
    UserRole.CLIENT: "Client",
}


def parse_assignment_type(value: Any) -> AssignmentType:
    if isinstance(value, AssignmentType):
        return value
    try:
        return AssignmentType(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(t.value for t in AssignmentType)
        raise ValidationError(f"Invalid assignment type '{value}'. Expected one of: {allowed}")


# -------------------------
# Validation
# -------------------------

@dataclass(frozen=True)
class AssignmentValidation:
    valid: bool
    message: str
    hierarchy_level_diff: Optional[int] = None
    code: Optional[ErrorCode] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "message": self.message,
            "hierarchy_level_diff": self.hierarchy_level_diff,
            "code": self.code.value if self.code else None,
        }


def evaluate_assignment(
    assigner_role: UserRole,
    assignee_role: UserRole,
    assignee_is_subordinate: bool,
    hierarchy_level_diff: Optional[int] = None,
) -> AssignmentValidation:
    """
    Pure rule check once the store lookups are done.

    - super_agent: anyone, any slot
    - agent: subordinate clients and workers only
    - super_worker: subordinate workers only
    - worker / client: never
    """
    assigner_role = UserRole(assigner_role)
    assignee_role = UserRole(assignee_role)
    allowed = ASSIGNABLE_ROLES.get(assigner_role, ())

    if allowed is None:
        return AssignmentValidation(True, "Super Agent can assign to any user", hierarchy_level_diff)

    if not allowed:
        return AssignmentValidation(
            False,
            f"Role {assigner_role.value} cannot assign projects",
            hierarchy_level_diff,
            ErrorCode.PERMISSION_DENIED,
        )

    name = _ROLE_NAMES[assigner_role]
    if assignee_is_subordinate and assignee_role in allowed:
        return AssignmentValidation(
            True, f"{name} can assign to subordinate {assignee_role.value}", hierarchy_level_diff
        )

    targets = " and ".join(f"{r.value}s" for r in allowed)
    return AssignmentValidation(
        False,
        f"{name} can only assign to subordinate {targets}",
        hierarchy_level_diff,
        ErrorCode.INVALID_ASSIGNMENT,
    )


def _level(session: Session, user_id: int) -> Optional[int]:
    row = get_hierarchy_row(session, user_id)
    return int(row.hierarchy_level) if row else None


def validate_assignment(
    session: Session,
    assigner_id: int,
    assigner_role: UserRole,
    assignee_id: int,
    assignee_role: UserRole,
    assignment_type: Any,
) -> AssignmentValidation:
    """
    hierarchy_level_diff = assigner level - assignee level (negative when the
    assignee sits deeper, which is the normal case).
    """
    parse_assignment_type(assignment_type)

    assigner_level = _level(session, assigner_id)
    assignee_level = _level(session, assignee_id)
    diff = None
    if assigner_level is not None and assignee_level is not None:
        diff = assigner_level - assignee_level

    role = UserRole(assigner_role)
    needs_tree = bool(ASSIGNABLE_ROLES.get(role))
    subordinate = is_subordinate(session, assigner_id, assignee_id) if needs_tree else False

    return evaluate_assignment(role, assignee_role, subordinate, diff)


# -------------------------
# Assign (transactional)
# -------------------------

@dataclass(frozen=True)
class AssignmentResult:
    success: bool
    message: str
    code: Optional[ErrorCode] = None
    project_id: Optional[int] = None
    assignment_type: Optional[str] = None
    assigned_to_id: Optional[int] = None
    previous_assigned_to_id: Optional[int] = None
    history_id: Optional[int] = None
    hierarchy_level_diff: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "code": self.code.value if self.code else None,
            "project_id": self.project_id,
            "assignment_type": self.assignment_type,
            "assigned_to_id": self.assigned_to_id,
            "previous_assigned_to_id": self.previous_assigned_to_id,
            "history_id": self.history_id,
            "hierarchy_level_diff": self.hierarchy_level_diff,
        }


def _open_rows(session: Session, project_id: int, assignment_type: AssignmentType) -> List[ProjectAssignmentHistory]:
    stmt = select(ProjectAssignmentHistory).where(
        ProjectAssignmentHistory.project_id == project_id,
        ProjectAssignmentHistory.assignment_type == assignment_type,
        ProjectAssignmentHistory.effective_until == None,  # noqa: E711
    )
    return list(session.exec(stmt).all())


def assign_project(
    session: Session,
    actor: ActorContext,
    project_id: int,
    assignee_id: int,
    assignment_type: Any,
    *,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> AssignmentResult:
    """
    Fill a project slot.

    Under a lock on the project row: re-validate, close the slot's open
    history row, insert the new one and set the slot column. One commit.
    """
    slot = parse_assignment_type(assignment_type)
    base = {"project_id": project_id, "assignment_type": slot.value, "assigned_to_id": assignee_id}

    project = get_project(session, project_id, for_update=True)
    assignee = session.get(User, assignee_id)
    if not assignee:
        raise NotFound("Assignee not found", ErrorCode.USER_NOT_FOUND)

    if not assignee.is_active:
        return AssignmentResult(
            success=False,
            message=f"{assignee.full_name} is inactive and cannot be assigned.",
            code=ErrorCode.USER_INACTIVE,
            **base,
        )

    check = validate_assignment(session, actor.user_id, actor.role, assignee.id, assignee.role, slot)
    if not check.valid:
        return AssignmentResult(
            success=False,
            message=check.message,
            code=check.code,
            hierarchy_level_diff=check.hierarchy_level_diff,
            **base,
        )

    column = SLOT_COLUMNS[slot]
    current = getattr(project, column)
    if current == assignee.id:
        return AssignmentResult(
            success=False,
            message=f"{assignee.full_name} is already assigned as {slot.value} on this project.",
            code=ErrorCode.NO_CHANGE_NEEDED,
            hierarchy_level_diff=check.hierarchy_level_diff,
            **base,
        )

    now = utcnow()
    try:
        previous = current
        for open_row in _open_rows(session, project.id, slot):
            previous = open_row.assigned_to_id
            open_row.effective_until = now
            session.add(open_row)
        session.flush()

        row = ProjectAssignmentHistory(
            project_id=project.id,
            assignment_type=slot,
            assigned_to_id=assignee.id,
            assigned_to_role=UserRole(assignee.role),
            assigned_by_id=actor.user_id,
            assigned_by_role=actor.role,
            previous_assigned_to_id=previous,
            assignment_reason=(reason or "").strip() or None,
            assignment_notes=(notes or "").strip() or None,
            hierarchy_level=_level(session, assignee.id),
            is_valid_hierarchy=True,
            validation_notes=check.message,
            assigned_at=now,
        )
        session.add(row)

        setattr(project, column, assignee.id)
        project.assigned_by = actor.user_id
        project.assigned_at = now
        session.add(project)

        session.commit()
        session.refresh(row)
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Assignment rolled back project_id=%s slot=%s", project_id, slot.value)
        raise DatabaseError("Failed to assign project") from e

    logger.info(
        "Project %s %s assigned to user_id=%s (was %s) by user_id=%s",
        project.id,
        slot.value,
        assignee.id,
        previous,
        actor.user_id,
    )
    return AssignmentResult(
        success=True,
        message=f"{assignee.full_name} assigned as {slot.value}.",
        previous_assigned_to_id=previous,
        history_id=row.id,
        hierarchy_level_diff=check.hierarchy_level_diff,
        **base,
    )


def bulk_assign(session: Session, actor: ActorContext, items: Iterable[Dict[str, Any]]) -> List[AssignmentResult]:
    """
    Each item commits (or fails) on its own; the batch never stops early.
    """
    results: List[AssignmentResult] = []
    for item in items:
        project_id = item.get("project_id")
        assignee_id = item.get("assignee_id")
        raw_type = item.get("assignment_type")
        try:
            results.append(
                assign_project(
                    session,
                    actor,
                    project_id,
                    assignee_id,
                    raw_type,
                    reason=item.get("reason"),
                    notes=item.get("notes"),
                )
            )
        except MarketplaceError as e:
            results.append(
                AssignmentResult(
                    success=False,
                    message=e.message,
                    code=e.code,
                    project_id=project_id,
                    assignment_type=str(getattr(raw_type, "value", raw_type)),
                    assigned_to_id=assignee_id,
                )
            )
    return results


def assignment_history(session: Session, project_id: int) -> List[ProjectAssignmentHistory]:
    stmt = (
        select(ProjectAssignmentHistory)
        .where(ProjectAssignmentHistory.project_id == project_id)
        .order_by(ProjectAssignmentHistory.assigned_at.desc(), ProjectAssignmentHistory.id.desc())
    )
    return list(session.exec(stmt).all())


# -------------------------
# Candidates + workload
# -------------------------

def workload_status(active_projects: int) -> str:
    if active_projects <= 0:
        return "available"
    if active_projects <= 2:
        return "light"
    if active_projects <= 5:
        return "moderate"
    if active_projects <= 8:
        return "heavy"
    return "overloaded"


def available_users(session: Session, actor: ActorContext, assignment_type: Any) -> List[Dict[str, Any]]:
    """
    Active users the actor could put into this slot, with their current
    open-project load on that slot. Least loaded first.
    """
    slot = parse_assignment_type(assignment_type)
    allowed = ASSIGNABLE_ROLES.get(actor.role, ())
    if allowed is not None and not allowed:
        return []

    roles = [r for r in SLOT_ROLES[slot] if allowed is None or r in allowed]
    if not roles:
        return []

    stmt = select(User).where(User.is_active == True, User.role.in_(roles))  # noqa: E712
    if allowed is not None:
        team = get_descendant_ids(session, actor.user_id)
        if not team:
            return []
        stmt = stmt.where(User.id.in_(team))
    users = list(session.exec(stmt).all())
    if not users:
        return []

    column = getattr(Project, SLOT_COLUMNS[slot])
    load_stmt = (
        select(column, func.count(Project.id))
        .where(column.in_([u.id for u in users]))
        .where(Project.status.notin_(CLOSED_STATUSES))
        .group_by(column)
    )
    loads = {int(uid): int(n) for uid, n in session.exec(load_stmt).all()}

    out = []
    for u in users:
        n = loads.get(u.id, 0)
        out.append(
            {
                "user_id": u.id,
                "full_name": u.full_name,
                "email": u.email,
                "role": UserRole(u.role).value,
                "active_projects": n,
                "workload_status": workload_status(n),
            }
        )
    out.sort(key=lambda d: (d["active_projects"], d["full_name"]))
    return out

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select, text

from ..config import settings
from ..models.user import User, UserRole, utcnow
from ..models.user_hierarchy import HierarchyChangeLog, UserHierarchy
from .context import ActorContext
from .errors import DatabaseError, ErrorCode, HierarchyViolation, NotFound, PermissionDenied

logger = logging.getLogger(__name__)


# -------------------------
# Role policy
# -------------------------

# Moves: child role -> roles it may be moved under.
ALLOWED_PARENT_ROLES: Dict[UserRole, Tuple[UserRole, ...]] = {
    UserRole.AGENT: (UserRole.SUPER_AGENT,),
    UserRole.SUPER_WORKER: (UserRole.AGENT,),
    UserRole.WORKER: (UserRole.SUPER_WORKER,),
    UserRole.CLIENT: (UserRole.AGENT,),
}

# Placement at registration / staff creation. Super agents hand out client
# codes and create super workers directly, so placement is wider than moves.
PLACEMENT_PARENT_ROLES: Dict[UserRole, Tuple[UserRole, ...]] = {
    UserRole.AGENT: (UserRole.SUPER_AGENT,),
    UserRole.SUPER_WORKER: (UserRole.AGENT, UserRole.SUPER_AGENT),
    UserRole.WORKER: (UserRole.SUPER_WORKER,),
    UserRole.CLIENT: (UserRole.AGENT, UserRole.SUPER_AGENT),
}

DEFAULT_CHANGE_REASON = "Hierarchy restructure"


def _max_depth(max_depth: Optional[int] = None) -> int:
    return int(max_depth or settings.max_hierarchy_depth)


def _role_label(role: UserRole) -> str:
    return UserRole(role).value


# -------------------------
# Pure validator
# -------------------------

@dataclass(frozen=True)
class MoveValidation:
    valid: bool
    message: str
    new_level: Optional[int] = None
    code: Optional[ErrorCode] = None


def validate_move(
    user_role: UserRole,
    new_parent_role: UserRole,
    current_level: Optional[int],
    new_parent_level: int,
    *,
    max_depth: Optional[int] = None,
) -> MoveValidation:
    """
    Decide whether placing a user of user_role under a parent of
    new_parent_role is legal.

    Rules (in order):
    - super agents are tree roots and never move
    - (user_role -> new_parent_role) must be in ALLOWED_PARENT_ROLES
    - resulting level = new_parent_level + 1 must not exceed the max depth

    Cycle and no-op checks need the store; see move_user().
    current_level is informational only.
    """
    user_role = UserRole(user_role)
    new_parent_role = UserRole(new_parent_role)
    limit = _max_depth(max_depth)

    if user_role == UserRole.SUPER_AGENT:
        return MoveValidation(
            valid=False,
            message="Super Agents cannot be moved in the hierarchy.",
            code=ErrorCode.INVALID_HIERARCHY_MOVE,
        )

    allowed = ALLOWED_PARENT_ROLES.get(user_role, ())
    if new_parent_role not in allowed:
        return MoveValidation(
            valid=False,
            message=(
                f"A {_role_label(user_role)} cannot be placed under a {_role_label(new_parent_role)}. "
                f"Valid parent roles: {', '.join(_role_label(r) for r in allowed)}"
            ),
            code=ErrorCode.INVALID_HIERARCHY_MOVE,
        )

    new_level = int(new_parent_level) + 1
    if new_level > limit:
        return MoveValidation(
            valid=False,
            message=f"This move would exceed the maximum hierarchy depth of {limit} levels.",
            new_level=new_level,
            code=ErrorCode.MAX_DEPTH_EXCEEDED,
        )

    return MoveValidation(valid=True, message="Move is valid.", new_level=new_level)


def can_place_under(user_role: UserRole, parent_role: UserRole) -> bool:
    return UserRole(parent_role) in PLACEMENT_PARENT_ROLES.get(UserRole(user_role), ())


# -------------------------
# Store traversal (recursive CTEs)
# -------------------------

def get_ancestor_ids(session: Session, user_id: int) -> List[int]:
    """
    Ancestors of user_id, nearest first (parent, grandparent, ... root).
    The recursion is capped one past the max depth so a corrupted cycle
    cannot loop forever.
    """
    sql = text(
        """
        WITH RECURSIVE ancestors(id, depth) AS (
            SELECT parent_id, 1 FROM user_hierarchy
            WHERE user_id = :uid AND parent_id IS NOT NULL
            UNION ALL
            SELECT h.parent_id, a.depth + 1 FROM user_hierarchy h
            INNER JOIN ancestors a ON h.user_id = a.id
            WHERE h.parent_id IS NOT NULL AND a.depth < :lim
        )
        SELECT id, depth FROM ancestors ORDER BY depth;
        """
    )
    rows = session.exec(sql, params={"uid": user_id, "lim": _max_depth() + 1})
    out: List[int] = []
    for r in rows:
        aid = int(r[0])
        if aid not in out:
            out.append(aid)
    return out


def get_descendant_depths(session: Session, user_id: int, max_levels: Optional[int] = None) -> Dict[int, int]:
    """
    Map descendant id -> relative depth below user_id (children = 1).
    """
    limit = _max_depth() + 1
    if max_levels is not None:
        limit = max(1, min(int(max_levels), limit))

    sql = text(
        """
        WITH RECURSIVE descendants(id, depth) AS (
            SELECT user_id, 1 FROM user_hierarchy WHERE parent_id = :root_id
            UNION ALL
            SELECT h.user_id, d.depth + 1 FROM user_hierarchy h
            INNER JOIN descendants d ON h.parent_id = d.id
            WHERE d.depth < :lim
        )
        SELECT id, depth FROM descendants;
        """
    )
    depths: Dict[int, int] = {}
    for r in session.exec(sql, params={"root_id": user_id, "lim": limit}):
        did, depth = int(r[0]), int(r[1])
        if did == user_id:
            continue
        if did not in depths or depth < depths[did]:
            depths[did] = depth
    return depths


def get_descendant_ids(session: Session, user_id: int, max_levels: Optional[int] = None) -> List[int]:
    return sorted(get_descendant_depths(session, user_id, max_levels))


def is_subordinate(session: Session, superior_id: int, user_id: int) -> bool:
    if superior_id == user_id:
        return False
    return superior_id in get_ancestor_ids(session, user_id)


def would_create_cycle(session: Session, user_id: int, new_parent_id: int) -> bool:
    """
    True when user_id is new_parent_id itself or one of its ancestors.
    """
    if user_id == new_parent_id:
        return True
    return user_id in get_ancestor_ids(session, new_parent_id)


def get_hierarchy_row(session: Session, user_id: int, *, for_update: bool = False) -> Optional[UserHierarchy]:
    stmt = select(UserHierarchy).where(UserHierarchy.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    return session.exec(stmt).first()


def can_view_user(session: Session, actor: ActorContext, target_id: int) -> bool:
    if actor.is_super_agent or actor.user_id == target_id:
        return True
    return is_subordinate(session, actor.user_id, target_id)


# -------------------------
# In-memory graph (tree reads + integrity)
# -------------------------

@dataclass
class HierarchyNode:
    user_id: int
    role: UserRole
    parent_id: Optional[int]
    level: int
    super_agent_id: Optional[int]
    full_name: str = ""
    email: str = ""
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "full_name": self.full_name,
            "email": self.email,
            "role": _role_label(self.role),
            "parent_id": self.parent_id,
            "hierarchy_level": self.level,
            "super_agent_id": self.super_agent_id,
            "is_active": self.is_active,
        }


@dataclass
class IntegrityReport:
    cycles: List[List[int]] = field(default_factory=list)
    orphans: List[int] = field(default_factory=list)
    level_mismatches: List[int] = field(default_factory=list)
    root_mismatches: List[int] = field(default_factory=list)
    depth_violations: List[int] = field(default_factory=list)
    role_violations: List[int] = field(default_factory=list)
    checked: int = 0

    @property
    def ok(self) -> bool:
        return not (
            self.cycles
            or self.orphans
            or self.level_mismatches
            or self.root_mismatches
            or self.depth_violations
            or self.role_violations
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "checked": self.checked,
            "cycles": self.cycles,
            "orphans": self.orphans,
            "level_mismatches": self.level_mismatches,
            "root_mismatches": self.root_mismatches,
            "depth_violations": self.depth_violations,
            "role_violations": self.role_violations,
        }


class HierarchyGraph:
    """
    Adjacency view over hierarchy rows, loaded once per request.

    Every walk keeps a seen-set, so corrupted data (a cycle) ends the walk
    instead of recursing forever.
    """

    def __init__(self, nodes: Iterable[HierarchyNode]):
        self.nodes: Dict[int, HierarchyNode] = {n.user_id: n for n in nodes}
        self.children: Dict[int, List[int]] = defaultdict(list)
        for n in self.nodes.values():
            if n.parent_id is not None:
                self.children[n.parent_id].append(n.user_id)
        for ids in self.children.values():
            ids.sort()

    @classmethod
    def load(cls, session: Session, super_agent_id: Optional[int] = None) -> "HierarchyGraph":
        stmt = select(UserHierarchy, User).where(UserHierarchy.user_id == User.id)
        if super_agent_id is not None:
            stmt = stmt.where(UserHierarchy.super_agent_id == super_agent_id)
        nodes = [
            HierarchyNode(
                user_id=int(u.id),
                role=UserRole(u.role),
                parent_id=h.parent_id,
                level=int(h.hierarchy_level),
                super_agent_id=h.super_agent_id,
                full_name=u.full_name,
                email=u.email,
                is_active=bool(u.is_active),
            )
            for h, u in session.exec(stmt).all()
        ]
        return cls(nodes)

    def __contains__(self, user_id: int) -> bool:
        return user_id in self.nodes

    def ancestors(self, user_id: int) -> List[int]:
        out: List[int] = []
        seen = {user_id}
        node = self.nodes.get(user_id)
        while node is not None and node.parent_id is not None:
            pid = node.parent_id
            if pid in seen:
                break
            seen.add(pid)
            out.append(pid)
            node = self.nodes.get(pid)
        return out

    def descendants(self, user_id: int, max_levels: Optional[int] = None) -> List[Tuple[int, int]]:
        """
        Breadth-first (id, relative depth) pairs below user_id.
        """
        out: List[Tuple[int, int]] = []
        seen = {user_id}
        queue = deque([(user_id, 0)])
        while queue:
            uid, depth = queue.popleft()
            if max_levels is not None and depth >= max_levels:
                continue
            for cid in self.children.get(uid, []):
                if cid in seen:
                    continue
                seen.add(cid)
                out.append((cid, depth + 1))
                queue.append((cid, depth + 1))
        return out

    def subtree(self, user_id: int, _seen: Optional[set] = None) -> Dict[str, Any]:
        seen = _seen if _seen is not None else set()
        seen.add(user_id)
        node = self.nodes[user_id]
        out = node.to_dict()
        out["children"] = [
            self.subtree(cid, seen) for cid in self.children.get(user_id, []) if cid not in seen
        ]
        return out

    def roots(self) -> List[int]:
        return sorted(uid for uid, n in self.nodes.items() if n.parent_id is None)

    def _find_cycles(self) -> List[List[int]]:
        cycles: List[List[int]] = []
        reported: set = set()
        for start in sorted(self.nodes):
            path: List[int] = []
            index: Dict[int, int] = {}
            cur: Optional[int] = start
            while cur is not None and cur in self.nodes and cur not in index:
                index[cur] = len(path)
                path.append(cur)
                cur = self.nodes[cur].parent_id
            if cur is not None and cur in index:
                loop = path[index[cur]:]
                key = frozenset(loop)
                if key not in reported:
                    reported.add(key)
                    cycles.append(sorted(loop))
        return cycles

    def integrity_report(self, max_depth: Optional[int] = None) -> IntegrityReport:
        limit = _max_depth(max_depth)
        report = IntegrityReport(checked=len(self.nodes))
        report.cycles = self._find_cycles()
        in_cycle = {uid for loop in report.cycles for uid in loop}

        for uid in sorted(self.nodes):
            node = self.nodes[uid]

            if node.level < 1 or node.level > limit:
                report.depth_violations.append(uid)

            if node.role == UserRole.SUPER_AGENT:
                if node.parent_id is not None or node.level != 1:
                    report.level_mismatches.append(uid)
                if node.super_agent_id != uid:
                    report.root_mismatches.append(uid)
                continue

            parent = self.nodes.get(node.parent_id) if node.parent_id is not None else None
            if parent is None:
                report.orphans.append(uid)
                continue

            if node.level != parent.level + 1:
                report.level_mismatches.append(uid)

            if not can_place_under(node.role, parent.role):
                report.role_violations.append(uid)

            if uid in in_cycle:
                continue
            chain = self.ancestors(uid)
            root = chain[-1] if chain else None
            if root is not None and node.super_agent_id != root:
                report.root_mismatches.append(uid)

        return report


# -------------------------
# Placement (registration / staff creation)
# -------------------------

def place_root(session: Session, user: User) -> UserHierarchy:
    row = UserHierarchy(user_id=user.id, parent_id=None, hierarchy_level=1, super_agent_id=user.id)
    session.add(row)
    return row


def place_user(session: Session, user: User, parent: User, *, max_depth: Optional[int] = None) -> UserHierarchy:
    """
    Create the hierarchy row for a new user under parent.
    Caller owns the transaction (no commit here).
    """
    if not can_place_under(user.role, parent.role):
        allowed = ", ".join(_role_label(r) for r in PLACEMENT_PARENT_ROLES.get(UserRole(user.role), ()))
        raise HierarchyViolation(
            f"A {_role_label(user.role)} cannot be placed under a {_role_label(parent.role)}. "
            f"Valid parent roles: {allowed}"
        )

    parent_row = get_hierarchy_row(session, parent.id)
    if parent_row is None:
        raise HierarchyViolation(f"{parent.full_name} is not placed in the hierarchy.")

    level = int(parent_row.hierarchy_level) + 1
    limit = _max_depth(max_depth)
    if level > limit:
        raise HierarchyViolation(
            f"This placement would exceed the maximum hierarchy depth of {limit} levels.",
            ErrorCode.MAX_DEPTH_EXCEEDED,
        )

    row = UserHierarchy(
        user_id=user.id,
        parent_id=parent.id,
        hierarchy_level=level,
        super_agent_id=parent_row.super_agent_id,
    )
    session.add(row)
    return row


# -------------------------
# Move
# -------------------------

@dataclass(frozen=True)
class MoveResult:
    success: bool
    message: str
    code: Optional[ErrorCode] = None
    user_id: Optional[int] = None
    old_parent_id: Optional[int] = None
    new_parent_id: Optional[int] = None
    old_level: Optional[int] = None
    new_level: Optional[int] = None
    descendants_updated: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "code": self.code.value if self.code else None,
            "user_id": self.user_id,
            "old_parent_id": self.old_parent_id,
            "new_parent_id": self.new_parent_id,
            "old_level": self.old_level,
            "new_level": self.new_level,
            "descendants_updated": self.descendants_updated,
        }


def _load_user(session: Session, user_id: int, label: str = "User") -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFound(f"{label} not found", ErrorCode.USER_NOT_FOUND)
    return user


def move_user(
    session: Session,
    actor: ActorContext,
    user_id: int,
    new_parent_id: int,
    reason: Optional[str] = None,
    *,
    max_depth: Optional[int] = None,
) -> MoveResult:
    """
    Move user_id (and its whole subtree) under new_parent_id.

    The moved user's hierarchy row is locked, every rule is re-checked
    against current state, then the new parent/level, the re-levelled
    subtree and a hierarchy_change_log row are committed together.

    Rule failures come back as MoveResult(success=False, code=...).
    Missing users raise NotFound; a non-super-agent actor raises
    PermissionDenied.
    """
    if not actor.is_super_agent:
        raise PermissionDenied("Only Super Agents can restructure the hierarchy.")

    if user_id == new_parent_id:
        return MoveResult(
            success=False,
            message="A user cannot be placed under themselves.",
            code=ErrorCode.CIRCULAR_REFERENCE,
            user_id=user_id,
        )

    user = _load_user(session, user_id)
    parent = _load_user(session, new_parent_id, "New parent")

    if not user.is_active:
        return MoveResult(
            success=False,
            message=f"{user.full_name} is inactive and cannot be moved.",
            code=ErrorCode.USER_INACTIVE,
            user_id=user_id,
        )
    if not parent.is_active:
        return MoveResult(
            success=False,
            message=f"{parent.full_name} is inactive and cannot receive new team members.",
            code=ErrorCode.PARENT_INACTIVE,
            user_id=user_id,
        )

    row = get_hierarchy_row(session, user_id, for_update=True)
    parent_row = get_hierarchy_row(session, new_parent_id)
    if row is None or parent_row is None:
        missing = user if row is None else parent
        return MoveResult(
            success=False,
            message=f"{missing.full_name} is not placed in the hierarchy.",
            code=ErrorCode.INVALID_HIERARCHY_MOVE,
            user_id=user_id,
        )

    if would_create_cycle(session, user_id, new_parent_id):
        return MoveResult(
            success=False,
            message="This move would create a circular reference in the hierarchy.",
            code=ErrorCode.CIRCULAR_REFERENCE,
            user_id=user_id,
        )

    check = validate_move(
        user.role,
        parent.role,
        row.hierarchy_level,
        parent_row.hierarchy_level,
        max_depth=max_depth,
    )
    if not check.valid:
        return MoveResult(success=False, message=check.message, code=check.code, user_id=user_id)

    if row.parent_id == new_parent_id:
        return MoveResult(
            success=False,
            message=f"{user.full_name} is already under {parent.full_name}.",
            code=ErrorCode.NO_CHANGE_NEEDED,
            user_id=user_id,
            old_parent_id=row.parent_id,
            new_parent_id=new_parent_id,
            old_level=row.hierarchy_level,
            new_level=row.hierarchy_level,
        )

    new_level = int(check.new_level or parent_row.hierarchy_level + 1)
    depths = get_descendant_depths(session, user_id)
    deepest = max(depths.values()) if depths else 0
    limit = _max_depth(max_depth)
    if new_level + deepest > limit:
        return MoveResult(
            success=False,
            message=(
                f"This move would place part of {user.full_name}'s team beyond "
                f"the maximum hierarchy depth of {limit} levels."
            ),
            code=ErrorCode.MAX_DEPTH_EXCEEDED,
            user_id=user_id,
        )

    old_parent_id = row.parent_id
    old_level = row.hierarchy_level
    now = utcnow()

    try:
        row.parent_id = new_parent_id
        row.hierarchy_level = new_level
        row.super_agent_id = parent_row.super_agent_id
        row.updated_at = now
        session.add(row)

        updated = _relevel_descendants(session, row, depths, now)

        session.add(
            HierarchyChangeLog(
                user_id=user_id,
                old_parent_id=old_parent_id,
                new_parent_id=new_parent_id,
                old_hierarchy_level=old_level,
                new_hierarchy_level=new_level,
                changed_by=actor.user_id,
                change_reason=(reason or "").strip() or DEFAULT_CHANGE_REASON,
            )
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Hierarchy move rolled back user_id=%s new_parent_id=%s", user_id, new_parent_id)
        raise DatabaseError("Failed to update hierarchy") from e

    logger.info(
        "Moved user_id=%s from parent=%s (level %s) to parent=%s (level %s); %s descendants re-levelled",
        user_id,
        old_parent_id,
        old_level,
        new_parent_id,
        new_level,
        updated,
    )
    return MoveResult(
        success=True,
        message=f"{user.full_name} moved under {parent.full_name}.",
        user_id=user_id,
        old_parent_id=old_parent_id,
        new_parent_id=new_parent_id,
        old_level=old_level,
        new_level=new_level,
        descendants_updated=updated,
    )


def _relevel_descendants(session: Session, moved: UserHierarchy, depths: Dict[int, int], now) -> int:
    if not depths:
        return 0
    rows = session.exec(select(UserHierarchy).where(UserHierarchy.user_id.in_(list(depths)))).all()
    for r in rows:
        r.hierarchy_level = int(moved.hierarchy_level) + depths[r.user_id]
        r.super_agent_id = moved.super_agent_id
        r.updated_at = now
        session.add(r)
    return len(rows)


# -------------------------
# Reads
# -------------------------

def _node_dict(user: User, row: Optional[UserHierarchy]) -> Dict[str, Any]:
    return {
        "user_id": user.id,
        "full_name": user.full_name,
        "email": user.email,
        "role": _role_label(user.role),
        "is_active": user.is_active,
        "parent_id": row.parent_id if row else None,
        "hierarchy_level": row.hierarchy_level if row else None,
        "super_agent_id": row.super_agent_id if row else None,
    }


def get_hierarchy_info(session: Session, user_id: int) -> Dict[str, Any]:
    user = _load_user(session, user_id)
    row = get_hierarchy_row(session, user_id)
    info = _node_dict(user, row)

    parent = session.get(User, row.parent_id) if row and row.parent_id else None
    root = session.get(User, row.super_agent_id) if row and row.super_agent_id else None
    info["parent"] = {"user_id": parent.id, "full_name": parent.full_name, "role": _role_label(parent.role)} if parent else None
    info["super_agent"] = {"user_id": root.id, "full_name": root.full_name} if root else None

    children = session.exec(select(UserHierarchy).where(UserHierarchy.parent_id == user_id)).all()
    info["direct_reports"] = len(children)
    return info


def get_path_to_root(session: Session, user_id: int) -> List[Dict[str, Any]]:
    """
    Root first, user last.
    """
    user = _load_user(session, user_id)
    chain = list(reversed(get_ancestor_ids(session, user_id)))
    out: List[Dict[str, Any]] = []
    for aid in chain:
        u = session.get(User, aid)
        if u:
            out.append(_node_dict(u, get_hierarchy_row(session, aid)))
    out.append(_node_dict(user, get_hierarchy_row(session, user_id)))
    return out


def get_network(session: Session, user_id: int, max_levels: Optional[int] = None) -> List[Dict[str, Any]]:
    _load_user(session, user_id)
    depths = get_descendant_depths(session, user_id, max_levels)
    if not depths:
        return []

    stmt = (
        select(User, UserHierarchy)
        .where(User.id == UserHierarchy.user_id)
        .where(User.id.in_(list(depths)))
    )
    out = []
    for u, h in session.exec(stmt).all():
        d = _node_dict(u, h)
        d["relative_depth"] = depths[u.id]
        out.append(d)
    out.sort(key=lambda d: (d["relative_depth"], d["user_id"]))
    return out


def get_tree(session: Session, super_agent_id: int) -> Dict[str, Any]:
    root = _load_user(session, super_agent_id)
    if root.role != UserRole.SUPER_AGENT:
        raise HierarchyViolation("Trees are rooted at a Super Agent.")
    graph = HierarchyGraph.load(session, super_agent_id=super_agent_id)
    if super_agent_id not in graph:
        raise NotFound("Super Agent is not placed in the hierarchy.", ErrorCode.USER_NOT_FOUND)
    return graph.subtree(super_agent_id)


def get_statistics(session: Session, user_id: int) -> Dict[str, Any]:
    _load_user(session, user_id)
    depths = get_descendant_depths(session, user_id)

    by_role: Dict[str, int] = {r.value: 0 for r in UserRole}
    by_depth: Dict[int, int] = defaultdict(int)
    active = 0
    if depths:
        for u in session.exec(select(User).where(User.id.in_(list(depths)))).all():
            by_role[_role_label(u.role)] += 1
            by_depth[depths[u.id]] += 1
            if u.is_active:
                active += 1

    return {
        "user_id": user_id,
        "direct_reports": by_depth.get(1, 0),
        "total_network": len(depths),
        "active_network": active,
        "by_role": by_role,
        "by_depth": dict(sorted(by_depth.items())),
    }


def check_integrity(session: Session, *, max_depth: Optional[int] = None) -> IntegrityReport:
    report = HierarchyGraph.load(session).integrity_report(max_depth)
    if not report.ok:
        logger.warning("Hierarchy integrity problems found: %s", report.to_dict())
    return report


def list_changes(session: Session, user_id: int, limit: int = 50) -> List[HierarchyChangeLog]:
    stmt = (
        select(HierarchyChangeLog)
        .where(HierarchyChangeLog.user_id == user_id)
        .order_by(HierarchyChangeLog.created_at.desc(), HierarchyChangeLog.id.desc())
        .limit(max(1, min(int(limit), 500)))
    )
    return list(session.exec(stmt).all())

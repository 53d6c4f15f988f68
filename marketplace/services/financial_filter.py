from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..models.financial_access_audit import FinancialAccessAudit
from ..models.project import Project
from ..models.user import User, UserRole
from .context import ActorContext
from .errors import DatabaseError, PermissionDenied

logger = logging.getLogger(__name__)


# -------------------------
# Field groups
# -------------------------

# What a paying client is allowed to know about its own project.
CLIENT_PRICE_FIELDS: FrozenSet[str] = frozenset(
    {
        "cost_gbp",
        "base_price",
        "deadline_charge",
        "total_cost",
        "pricing_breakdown",
        "payment_status",
        "amount_paid",
        "amount_due",
    }
)

# Fees, payouts and margins. Never shown to clients.
INTERNAL_FIELDS: FrozenSet[str] = frozenset(
    {
        "agent_fee",
        "worker_payment",
        "super_worker_fee",
        "worker_fee",
        "system_total",
        "profit_margin",
        "system_profit",
        "super_agent_share",
    }
)

MONETARY_FIELDS: FrozenSet[str] = CLIENT_PRICE_FIELDS | INTERNAL_FIELDS

SYSTEM_PROFIT_FIELDS: FrozenSet[str] = frozenset({"system_profit", "super_agent_share"})

# Per-user money columns on user listings.
USER_FINANCIAL_FIELDS: FrozenSet[str] = frozenset(
    {"total_earnings", "pending_earnings", "total_spent", "agent_fee_percentage", "base_rate_per_500_words"}
)


@dataclass(frozen=True)
class FinancialPermissions:
    can_view_all_financials: bool = False
    can_view_own_earnings: bool = False
    can_view_client_prices: bool = False
    can_view_agent_fees: bool = False
    can_view_worker_payments: bool = False
    can_view_profit_margins: bool = False
    can_view_system_profit: bool = False
    can_view_audit_log: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True)
class FinancialPolicy:
    """
    always_strip: removed from every record
    foreign_strip: removed when the viewer is not named in owner_fields
    """
    always_strip: FrozenSet[str]
    foreign_strip: FrozenSet[str]
    owner_fields: Tuple[str, ...]
    permissions: FinancialPermissions


FINANCIAL_POLICY: Dict[UserRole, FinancialPolicy] = {
    UserRole.SUPER_AGENT: FinancialPolicy(
        always_strip=frozenset(),
        foreign_strip=frozenset(),
        owner_fields=(),
        permissions=FinancialPermissions(*([True] * 8)),
    ),
    UserRole.AGENT: FinancialPolicy(
        always_strip=SYSTEM_PROFIT_FIELDS,
        foreign_strip=MONETARY_FIELDS,
        owner_fields=("agent_id", "sub_agent_id"),
        permissions=FinancialPermissions(
            can_view_own_earnings=True,
            can_view_client_prices=True,
            can_view_agent_fees=True,
            can_view_worker_payments=True,
            can_view_profit_margins=True,
        ),
    ),
    UserRole.SUPER_WORKER: FinancialPolicy(
        always_strip=frozenset({"agent_fee", "profit_margin"}) | SYSTEM_PROFIT_FIELDS,
        foreign_strip=frozenset(),
        owner_fields=(),
        permissions=FinancialPermissions(can_view_own_earnings=True, can_view_worker_payments=True),
    ),
    UserRole.WORKER: FinancialPolicy(
        always_strip=MONETARY_FIELDS,
        foreign_strip=frozenset(),
        owner_fields=(),
        permissions=FinancialPermissions(),
    ),
    UserRole.CLIENT: FinancialPolicy(
        always_strip=INTERNAL_FIELDS,
        foreign_strip=MONETARY_FIELDS,
        owner_fields=("client_id",),
        permissions=FinancialPermissions(can_view_own_earnings=True, can_view_client_prices=True),
    ),
}


def policy_for(role: Any) -> FinancialPolicy:
    # Unknown roles get the most restrictive policy.
    try:
        return FINANCIAL_POLICY[UserRole(role)]
    except ValueError:
        return FINANCIAL_POLICY[UserRole.WORKER]


def permissions_for(role: Any) -> FinancialPermissions:
    return policy_for(role).permissions


def _same_id(value: Any, viewer_id: Optional[int]) -> bool:
    if value is None or viewer_id is None:
        return False
    try:
        return int(value) == int(viewer_id)
    except (TypeError, ValueError):
        return False


# -------------------------
# Projection
# -------------------------

def filter_financial_fields(record: Mapping[str, Any], role: Any, viewer_id: Optional[int]) -> Dict[str, Any]:
    """
    Return a copy of record without the money fields role may not see.

    Applied server side after fetch and before serialization; the input is
    never mutated.
    """
    policy = policy_for(role)
    out = dict(record)

    strip = set(policy.always_strip)
    if policy.foreign_strip:
        owns = any(_same_id(record.get(f), viewer_id) for f in policy.owner_fields)
        if not owns:
            strip |= policy.foreign_strip

    for key in strip:
        out.pop(key, None)
    return out


def filter_user_financial_fields(record: Mapping[str, Any], role: Any, viewer_id: Optional[int]) -> Dict[str, Any]:
    """
    Super agents see everyone's money; other roles see their own when their
    permissions include own earnings.
    """
    perms = policy_for(role).permissions
    if perms.can_view_all_financials:
        return dict(record)
    if perms.can_view_own_earnings and _same_id(record.get("user_id", record.get("id")), viewer_id):
        return dict(record)
    return {k: v for k, v in record.items() if k not in USER_FINANCIAL_FIELDS}


# Fee split key -> permission that reveals it.
QUOTE_SPLIT_PERMISSIONS: Dict[str, str] = {
    "agent_fee": "can_view_agent_fees",
    "super_worker_fee": "can_view_worker_payments",
    "worker_fee": "can_view_worker_payments",
    "client_total": "can_view_client_prices",
    "system_total": "can_view_profit_margins",
}

QUOTE_PRICE_FIELDS: FrozenSet[str] = frozenset({"base_cost", "urgency_charge", "total_cost"})


def filter_quote(quote: Mapping[str, Any], role: Any) -> Dict[str, Any]:
    """
    Project a price quote for role. Roles that never see client prices on
    projects lose the price lines too; fee splits keep only the parts the
    role's permissions cover, and disappear when none are left.
    """
    policy = policy_for(role)
    out = dict(quote)

    if "total_cost" in policy.always_strip:
        for key in QUOTE_PRICE_FIELDS:
            out.pop(key, None)

    splits = quote.get("fee_splits")
    if splits:
        perms = policy.permissions
        kept = {k: v for k, v in splits.items() if getattr(perms, QUOTE_SPLIT_PERMISSIONS.get(k, ""), False)}
        out["fee_splits"] = kept or None
    return out


def project_record(project: Project) -> Dict[str, Any]:
    data = project.model_dump()
    data["total_cost"] = project.cost_gbp
    return data


def filtered_project(project: Project, actor: ActorContext) -> Dict[str, Any]:
    return filter_financial_fields(project_record(project), actor.role, actor.user_id)


# -------------------------
# Audit
# -------------------------

def record_access(
    session: Session,
    actor: ActorContext,
    access_type: str,
    *,
    resource_id: Optional[Any] = None,
    resource_type: Optional[str] = None,
    success: bool = True,
    error_message: Optional[str] = None,
) -> FinancialAccessAudit:
    row = FinancialAccessAudit(
        user_id=actor.user_id,
        user_role=actor.role.value,
        access_type=access_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        resource_type=resource_type,
        success=success,
        error_message=error_message,
    )
    try:
        session.add(row)
        session.commit()
        session.refresh(row)
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Financial audit write failed user_id=%s access_type=%s", actor.user_id, access_type)
        raise DatabaseError("Failed to record financial access") from e
    return row


def audit_log(session: Session, actor: ActorContext, *, user_id: Optional[int] = None, limit: int = 100) -> List[FinancialAccessAudit]:
    if not permissions_for(actor.role).can_view_audit_log:
        raise PermissionDenied("Only Super Agents can view the financial audit log.")
    stmt = select(FinancialAccessAudit)
    if user_id is not None:
        stmt = stmt.where(FinancialAccessAudit.user_id == user_id)
    stmt = stmt.order_by(FinancialAccessAudit.created_at.desc(), FinancialAccessAudit.id.desc())
    return list(session.exec(stmt.limit(max(1, min(int(limit), 1000)))).all())


# -------------------------
# Summaries
# -------------------------

def _sum(projects: List[Project], attr: str) -> Decimal:
    total = Decimal("0")
    for p in projects:
        v = getattr(p, attr)
        if v is not None:
            total += Decimal(str(v))
    return total.quantize(Decimal("0.01"))


def financial_summary(session: Session, actor: ActorContext) -> Dict[str, Any]:
    """
    Role-shaped totals. Each role only gets figures its permissions allow.
    """
    uid = actor.user_id
    role = actor.role

    if role == UserRole.SUPER_AGENT:
        projects = list(session.exec(select(Project)).all())
        return {
            "role": role.value,
            "project_count": len(projects),
            "total_revenue": _sum(projects, "cost_gbp"),
            "total_agent_fees": _sum(projects, "agent_fee"),
            "total_super_worker_fees": _sum(projects, "super_worker_fee"),
            "total_worker_fees": _sum(projects, "worker_fee"),
            "total_system_profit": _sum(projects, "system_profit"),
        }

    if role == UserRole.AGENT:
        stmt = select(Project).where((Project.agent_id == uid) | (Project.sub_agent_id == uid))
        projects = list(session.exec(stmt).all())
        return {
            "role": role.value,
            "project_count": len(projects),
            "client_revenue": _sum(projects, "cost_gbp"),
            "agent_earnings": _sum(projects, "agent_fee"),
            "profit_margin": _sum(projects, "profit_margin"),
        }

    if role == UserRole.SUPER_WORKER:
        projects = list(session.exec(select(Project).where(Project.sub_worker_id == uid)).all())
        return {
            "role": role.value,
            "project_count": len(projects),
            "super_worker_earnings": _sum(projects, "super_worker_fee"),
            "worker_payments": _sum(projects, "worker_fee"),
        }

    if role == UserRole.CLIENT:
        projects = list(session.exec(select(Project).where(Project.client_id == uid)).all())
        return {
            "role": role.value,
            "project_count": len(projects),
            "total_spent": _sum(projects, "cost_gbp"),
        }

    # Workers see a project count only; worker fees are stripped for them
    # everywhere else, so earnings stay out of the summary too.
    projects = list(session.exec(select(Project).where(Project.worker_id == uid)).all())
    return {"role": UserRole.WORKER.value, "project_count": len(projects)}


def user_financials(session: Session, users: List[User]) -> List[Dict[str, Any]]:
    """
    Per-user money rows before filtering: earnings for staff, spend for clients.
    """
    out = []
    for u in users:
        role = UserRole(u.role)
        row: Dict[str, Any] = {
            "user_id": u.id,
            "full_name": u.full_name,
            "role": role.value,
            "is_active": u.is_active,
        }
        if role == UserRole.CLIENT:
            projects = list(session.exec(select(Project).where(Project.client_id == u.id)).all())
            row["total_spent"] = _sum(projects, "cost_gbp")
        elif role == UserRole.AGENT:
            projects = list(session.exec(select(Project).where(Project.agent_id == u.id)).all())
            row["total_earnings"] = _sum(projects, "agent_fee")
        elif role == UserRole.SUPER_WORKER:
            projects = list(session.exec(select(Project).where(Project.sub_worker_id == u.id)).all())
            row["total_earnings"] = _sum(projects, "super_worker_fee")
        elif role == UserRole.WORKER:
            projects = list(session.exec(select(Project).where(Project.worker_id == u.id)).all())
            row["total_earnings"] = _sum(projects, "worker_fee")
        out.append(row)
    return out

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, or_, select

from ..models.project import Project
from ..models.user import User, UserRole
from .context import ActorContext
from .errors import DatabaseError, ErrorCode, NotFound, PermissionDenied, ValidationError
from .hierarchy_engine import get_descendant_ids
from .pricing_engine import PriceQuote, pricing_agent_for_client, quote_for_client

logger = logging.getLogger(__name__)


def apply_quote(project: Project, quote: PriceQuote) -> Project:
    """
    Copy a quote's money onto a project. Financial columns are only ever
    written here.

    Agent path margins: profit_margin is what the client pays minus the
    worker payout; system_profit is that margin minus the agent's fee.
    """
    project.pricing_model = quote.pricing_model
    project.urgency_level = quote.urgency_level
    project.base_price = quote.base_cost
    project.deadline_charge = quote.urgency_charge
    project.cost_gbp = quote.total_cost

    splits = quote.fee_splits
    if splits is None:
        project.agent_fee = None
        project.super_worker_fee = None
        project.worker_fee = None
        project.system_total = None
        project.profit_margin = None
        project.system_profit = None
        return project

    project.agent_fee = splits.agent_fee
    project.super_worker_fee = splits.super_worker_fee
    project.worker_fee = splits.worker_fee
    project.system_total = splits.system_total
    project.profit_margin = quote.total_cost - splits.worker_fee
    project.system_profit = project.profit_margin - splits.agent_fee
    return project


def create_project(
    session: Session,
    actor: ActorContext,
    *,
    title: str,
    word_count: int,
    deadline: datetime,
    client_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Project:
    """
    Clients create their own projects; super agents may create one on a
    client's behalf. The client's agent (if any) is linked and prices it.
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("Project title is required.")

    if actor.role == UserRole.CLIENT:
        if client_id is not None and client_id != actor.user_id:
            raise PermissionDenied("Clients can only create their own projects.")
        client_id = actor.user_id
    elif actor.is_super_agent:
        if client_id is None:
            raise ValidationError("client_id is required when creating a project for a client.")
    else:
        raise PermissionDenied("Only clients and Super Agents can create projects.")

    client = session.get(User, client_id)
    if not client or client.role != UserRole.CLIENT:
        raise NotFound("Client not found", ErrorCode.USER_NOT_FOUND)

    quote = quote_for_client(session, client.id, word_count, deadline, now=now)
    agent = pricing_agent_for_client(session, client.id)

    project = Project(
        title=title,
        client_id=client.id,
        agent_id=agent.id if agent else None,
        word_count=word_count,
        deadline=deadline,
    )
    apply_quote(project, quote)

    try:
        session.add(project)
        session.commit()
        session.refresh(project)
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Project create rolled back client_id=%s", client_id)
        raise DatabaseError("Failed to create project") from e

    logger.info(
        "Project created id=%s client_id=%s model=%s total=%s",
        project.id,
        client.id,
        project.pricing_model,
        project.cost_gbp,
    )
    return project


def get_project(session: Session, project_id: int, *, for_update: bool = False) -> Project:
    stmt = select(Project).where(Project.id == project_id)
    if for_update:
        stmt = stmt.with_for_update()
    project = session.exec(stmt).first()
    if not project:
        raise NotFound("Project not found", ErrorCode.PROJECT_NOT_FOUND)
    return project


def _visibility_clause(session: Session, actor: ActorContext):
    uid = actor.user_id
    role = actor.role

    if role == UserRole.SUPER_AGENT:
        return None
    if role == UserRole.CLIENT:
        return Project.client_id == uid
    if role == UserRole.WORKER:
        return Project.worker_id == uid

    team = get_descendant_ids(session, uid)
    if role == UserRole.AGENT:
        clauses = [Project.agent_id == uid, Project.sub_agent_id == uid]
        if team:
            clauses.append(Project.client_id.in_(team))
        return or_(*clauses)
    # super worker
    clauses = [Project.sub_worker_id == uid]
    if team:
        clauses.append(Project.worker_id.in_(team))
    return or_(*clauses)


def visible_projects(session: Session, actor: ActorContext, *, status: Optional[str] = None, limit: int = 200) -> List[Project]:
    stmt = select(Project)
    clause = _visibility_clause(session, actor)
    if clause is not None:
        stmt = stmt.where(clause)
    if status:
        stmt = stmt.where(Project.status == status.strip())
    stmt = stmt.order_by(Project.created_at.desc(), Project.id.desc()).limit(max(1, min(int(limit), 1000)))
    return list(session.exec(stmt).all())


def can_view_project(session: Session, actor: ActorContext, project: Project) -> bool:
    clause = _visibility_clause(session, actor)
    if clause is None:
        return True
    stmt = select(Project.id).where(Project.id == project.id).where(clause)
    return session.exec(stmt).first() is not None

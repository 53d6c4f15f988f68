from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select

from ..database import get_db
from ..models.user import User
from ..services import financial_filter as ff
from ..services.context import ActorContext
from ..services.hierarchy_engine import get_descendant_ids
from ..services.projects import can_view_project, get_project, visible_projects
from .deps import get_actor

router = APIRouter(prefix="/financial", tags=["financial"])


@router.get("/permissions")
def permissions(actor: ActorContext = Depends(get_actor)) -> Dict[str, Any]:
    return {"role": actor.role.value, "permissions": ff.permissions_for(actor.role).to_dict()}


@router.get("/summary")
def summary(db: Session = Depends(get_db), actor: ActorContext = Depends(get_actor)) -> Dict[str, Any]:
    out = ff.financial_summary(db, actor)
    ff.record_access(db, actor, "financial_summary")
    return out


@router.get("/projects")
def projects(
    status: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> List[Dict[str, Any]]:
    rows = [ff.filtered_project(p, actor) for p in visible_projects(db, actor, status=status)]
    ff.record_access(db, actor, "project_list", resource_type="project")
    return rows


@router.get("/projects/{project_id}")
def project_detail(
    project_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    project = get_project(db, project_id)
    if not can_view_project(db, actor, project):
        ff.record_access(
            db,
            actor,
            "project_detail",
            resource_id=project_id,
            resource_type="project",
            success=False,
            error_message="not in viewer's projects",
        )
        raise HTTPException(status_code=403, detail="You cannot view this project")

    out = ff.filtered_project(project, actor)
    ff.record_access(db, actor, "project_detail", resource_id=project_id, resource_type="project")
    return out


@router.get("/users")
def users(db: Session = Depends(get_db), actor: ActorContext = Depends(get_actor)) -> List[Dict[str, Any]]:
    """
    Money per user in the caller's reach (everyone for super agents,
    self + network otherwise), filtered per viewer.
    """
    stmt = select(User)
    if not actor.is_super_agent:
        stmt = stmt.where(User.id.in_([actor.user_id] + get_descendant_ids(db, actor.user_id)))
    rows = ff.user_financials(db, list(db.exec(stmt.order_by(User.id)).all()))
    ff.record_access(db, actor, "user_financials", resource_type="user")
    return [ff.filter_user_financial_fields(r, actor.role, actor.user_id) for r in rows]


@router.get("/audit")
def audit(
    user_id: Optional[int] = Query(default=None, ge=1),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> List[Dict[str, Any]]:
    return [r.model_dump() for r in ff.audit_log(db, actor, user_id=user_id, limit=limit)]

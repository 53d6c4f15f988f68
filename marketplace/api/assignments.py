from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field as PydField
from sqlmodel import Session

from ..database import get_db
from ..models.user import User
from ..services import assignment_engine as ae
from ..services.context import ActorContext
from ..services.projects import can_view_project, get_project
from .deps import get_actor, raise_for_outcome

router = APIRouter(prefix="/assignments", tags=["assignments"])


# -------------------------
# Schemas
# -------------------------

class AssignmentCheck(BaseModel):
    assignee_id: int = PydField(..., ge=1)
    assignment_type: str


class AssignRequest(BaseModel):
    project_id: int = PydField(..., ge=1)
    assignee_id: int = PydField(..., ge=1)
    assignment_type: str
    reason: Optional[str] = PydField(default=None, max_length=500)
    notes: Optional[str] = PydField(default=None, max_length=2000)


class BulkAssignRequest(BaseModel):
    items: List[AssignRequest] = PydField(..., min_length=1, max_length=100)


# -------------------------
# Routes
# -------------------------

@router.post("/validate")
def validate(
    payload: AssignmentCheck,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    assignee = db.get(User, payload.assignee_id)
    if not assignee:
        raise HTTPException(status_code=404, detail="Assignee not found")
    check = ae.validate_assignment(
        db, actor.user_id, actor.role, assignee.id, assignee.role, payload.assignment_type
    )
    return check.to_dict()


@router.post("/assign")
def assign(
    payload: AssignRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    result = ae.assign_project(
        db,
        actor,
        payload.project_id,
        payload.assignee_id,
        payload.assignment_type,
        reason=payload.reason,
        notes=payload.notes,
    )
    raise_for_outcome(result.success, result.code, result.message, result.to_dict())
    return result.to_dict()


@router.post("/bulk")
def bulk_assign(
    payload: BulkAssignRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    results = ae.bulk_assign(db, actor, [item.model_dump() for item in payload.items])
    ok = sum(1 for r in results if r.success)
    return {
        "total": len(results),
        "succeeded": ok,
        "failed": len(results) - ok,
        "results": [r.to_dict() for r in results],
    }


@router.get("/history/{project_id}")
def history(
    project_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> List[Dict[str, Any]]:
    project = get_project(db, project_id)
    if not can_view_project(db, actor, project):
        raise HTTPException(status_code=403, detail="You cannot view this project")
    return [r.model_dump() for r in ae.assignment_history(db, project_id)]


@router.get("/available/{assignment_type}")
def available(
    assignment_type: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> List[Dict[str, Any]]:
    return ae.available_users(db, actor, assignment_type)

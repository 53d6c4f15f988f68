from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field as PydField
from sqlmodel import Session

from ..database import get_db
from ..services.context import ActorContext
from ..services.financial_filter import filtered_project
from ..services.projects import can_view_project, create_project, get_project, visible_projects
from .deps import get_actor

router = APIRouter(prefix="/projects", tags=["projects"])


class ProjectCreate(BaseModel):
    title: str = PydField(..., min_length=1, max_length=300)
    word_count: int
    deadline: datetime
    client_id: Optional[int] = PydField(default=None, ge=1)


@router.post("", status_code=201)
def create(
    payload: ProjectCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    project = create_project(
        db,
        actor,
        title=payload.title,
        word_count=payload.word_count,
        deadline=payload.deadline,
        client_id=payload.client_id,
    )
    return filtered_project(project, actor)


@router.get("")
def list_projects(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> List[Dict[str, Any]]:
    return [filtered_project(p, actor) for p in visible_projects(db, actor, status=status, limit=limit)]


@router.get("/{project_id}")
def get_one(
    project_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    project = get_project(db, project_id)
    if not can_view_project(db, actor, project):
        raise HTTPException(status_code=403, detail="You cannot view this project")
    return filtered_project(project, actor)

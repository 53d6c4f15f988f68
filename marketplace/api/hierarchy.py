from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field as PydField
from sqlmodel import Session

from ..database import get_db
from ..models.user import User
from ..services import hierarchy_engine as he
from ..services.context import ActorContext
from ..services.errors import ErrorCode
from .deps import get_actor, raise_for_outcome

router = APIRouter(prefix="/hierarchy", tags=["hierarchy"])


# -------------------------
# Schemas
# -------------------------

class MoveRequest(BaseModel):
    user_id: int = PydField(..., ge=1)
    new_parent_id: int = PydField(..., ge=1)
    reason: Optional[str] = PydField(default=None, max_length=500)


class MoveCheckRequest(BaseModel):
    user_id: int = PydField(..., ge=1)
    new_parent_id: int = PydField(..., ge=1)


# -------------------------
# Helpers
# -------------------------

def _require_super_agent(actor: ActorContext) -> None:
    if not actor.is_super_agent:
        raise HTTPException(status_code=403, detail="Super Agent access required")


def _require_view(db: Session, actor: ActorContext, user_id: int) -> None:
    if not he.can_view_user(db, actor, user_id):
        raise HTTPException(status_code=403, detail="You can only view users in your own network")


# -------------------------
# Routes
# -------------------------

@router.get("/me")
def my_position(db: Session = Depends(get_db), actor: ActorContext = Depends(get_actor)) -> Dict[str, Any]:
    return he.get_hierarchy_info(db, actor.user_id)


@router.get("/path/{user_id}")
def path_to_root(
    user_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> List[Dict[str, Any]]:
    _require_view(db, actor, user_id)
    return he.get_path_to_root(db, user_id)


@router.get("/network/{user_id}")
def network(
    user_id: int,
    max_levels: Optional[int] = Query(default=None, ge=1, le=10),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    _require_view(db, actor, user_id)
    members = he.get_network(db, user_id, max_levels)
    return {"user_id": user_id, "count": len(members), "members": members}


@router.get("/tree")
def tree(
    super_agent_id: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    _require_super_agent(actor)
    return he.get_tree(db, super_agent_id or actor.user_id)


@router.post("/validate-move")
def validate_move(
    payload: MoveCheckRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    """
    Dry run of a move: role/depth rules, cycle check and no-op detection.
    Nothing is written.
    """
    _require_super_agent(actor)

    user = db.get(User, payload.user_id)
    parent = db.get(User, payload.new_parent_id)
    if not user or not parent:
        raise HTTPException(status_code=404, detail="User not found")

    row = he.get_hierarchy_row(db, user.id)
    parent_row = he.get_hierarchy_row(db, parent.id)
    if not row or not parent_row:
        return {"valid": False, "message": "Both users must be placed in the hierarchy.", "code": ErrorCode.INVALID_HIERARCHY_MOVE.value}

    if he.would_create_cycle(db, user.id, parent.id):
        return {
            "valid": False,
            "message": "This move would create a circular reference in the hierarchy.",
            "code": ErrorCode.CIRCULAR_REFERENCE.value,
        }

    check = he.validate_move(user.role, parent.role, row.hierarchy_level, parent_row.hierarchy_level)
    if check.valid and row.parent_id == parent.id:
        return {
            "valid": False,
            "message": f"{user.full_name} is already under {parent.full_name}.",
            "code": ErrorCode.NO_CHANGE_NEEDED.value,
            "new_level": row.hierarchy_level,
        }

    return {
        "valid": check.valid,
        "message": check.message,
        "code": check.code.value if check.code else None,
        "current_level": row.hierarchy_level,
        "new_level": check.new_level,
    }


@router.put("/move")
def move(
    payload: MoveRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    result = he.move_user(db, actor, payload.user_id, payload.new_parent_id, payload.reason)
    raise_for_outcome(result.success, result.code, result.message, result.to_dict())
    return result.to_dict()


@router.get("/statistics")
def statistics(
    user_id: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    target = user_id or actor.user_id
    _require_view(db, actor, target)
    return he.get_statistics(db, target)


@router.get("/integrity")
def integrity(db: Session = Depends(get_db), actor: ActorContext = Depends(get_actor)) -> Dict[str, Any]:
    _require_super_agent(actor)
    return he.check_integrity(db).to_dict()


@router.get("/changes/{user_id}")
def changes(
    user_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> List[Dict[str, Any]]:
    _require_view(db, actor, user_id)
    return [c.model_dump() for c in he.list_changes(db, user_id, limit)]

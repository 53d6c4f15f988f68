from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field as PydField
from sqlmodel import Session

from ..database import get_db
from ..models.user import User, UserRole
from ..services.context import ActorContext
from ..services.hierarchy_engine import can_view_user, get_hierarchy_row
from ..services.registration import Registration, create_staff, register_with_code
from .deps import get_actor

router = APIRouter(prefix="/users", tags=["users"])


# -------------------------
# Schemas
# -------------------------

class RegisterRequest(BaseModel):
    """
    Self-registration. Role and placement come from the reference code.
    """
    full_name: str = PydField(..., min_length=1, max_length=200)
    email: EmailStr
    reference_code: str = PydField(..., min_length=1, max_length=64)


class StaffCreate(BaseModel):
    full_name: str = PydField(..., min_length=1, max_length=200)
    email: EmailStr
    role: UserRole
    parent_id: Optional[int] = PydField(default=None, ge=1)


# -------------------------
# Helpers
# -------------------------

def user_out(session: Session, user: User) -> Dict[str, Any]:
    row = get_hierarchy_row(session, user.id)
    return {
        "id": user.id,
        "full_name": user.full_name,
        "email": user.email,
        "role": UserRole(user.role).value,
        "is_active": user.is_active,
        "reference_code_used": user.reference_code_used,
        "created_at": user.created_at,
        "parent_id": row.parent_id if row else None,
        "hierarchy_level": row.hierarchy_level if row else None,
        "super_agent_id": row.super_agent_id if row else None,
    }


def _registration_out(session: Session, reg: Registration) -> Dict[str, Any]:
    return {
        "user": user_out(session, reg.user),
        "reference_codes": [c.model_dump() for c in reg.codes],
    }


# -------------------------
# Routes
# -------------------------

@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    reg = register_with_code(
        db,
        full_name=payload.full_name,
        email=str(payload.email),
        reference_code=payload.reference_code,
    )
    return _registration_out(db, reg)


@router.post("", status_code=201)
def create_user(
    payload: StaffCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    reg = create_staff(
        db,
        actor,
        full_name=payload.full_name,
        email=str(payload.email),
        role=payload.role,
        parent_id=payload.parent_id,
    )
    return _registration_out(db, reg)


@router.get("/{user_id}")
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not can_view_user(db, actor, user_id):
        raise HTTPException(status_code=403, detail="You can only view users in your own network")
    return user_out(db, user)

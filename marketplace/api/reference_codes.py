from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field as PydField
from sqlmodel import Session

from ..database import get_db
from ..models.reference_code import ReferenceCode
from ..services import reference_codes as rc
from ..services.context import ActorContext
from .deps import get_actor

router = APIRouter(prefix="/reference-codes", tags=["reference-codes"])


# -------------------------
# Schemas
# -------------------------

class CodeCheck(BaseModel):
    code: str = PydField(..., min_length=1, max_length=64)


class CodeGenerate(BaseModel):
    code_type: str
    prefix: Optional[str] = PydField(default=None, max_length=17)


def _code_out(row: ReferenceCode) -> Dict[str, Any]:
    return row.model_dump()


# -------------------------
# Routes
# -------------------------

@router.post("/validate")
def validate_code(payload: CodeCheck, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """
    Public: the registration form checks a code before sign-up.
    Always 200; the reason tells the UI which message to show.
    """
    return rc.validate(db, payload.code).to_dict()


@router.post("/generate", status_code=201)
def generate_code(
    payload: CodeGenerate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    return _code_out(rc.generate(db, actor.user_id, payload.code_type, payload.prefix))


@router.get("/mine")
def my_codes(
    include_inactive: bool = True,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> List[Dict[str, Any]]:
    return [_code_out(r) for r in rc.list_codes(db, actor.user_id, include_inactive=include_inactive)]


@router.patch("/{code_id}/deactivate")
def deactivate_code(
    code_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    return _code_out(rc.deactivate(db, actor, code_id))


@router.patch("/{code_id}/reactivate")
def reactivate_code(
    code_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    return _code_out(rc.reactivate(db, actor, code_id))


@router.post("/{code_id}/regenerate")
def regenerate_code(
    code_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    old, new = rc.regenerate(db, actor, code_id)
    return {"old": _code_out(old), "new": _code_out(new)}


@router.get("/{code_id}/stats")
def code_stats(
    code_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    return rc.code_stats(db, actor, code_id)

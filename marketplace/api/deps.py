from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlmodel import Session

from ..database import get_db
from ..models.user import User
from ..services.context import ActorContext
from ..services.errors import ErrorCode, error_for_code


def get_actor(
    x_user_id: Optional[int] = Header(default=None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> ActorContext:
    """
    Resolve the caller. Authentication happens upstream; by the time a
    request reaches us the gateway has put the session's user id in
    X-User-Id.
    """
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")

    user = db.get(User, x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unknown user")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is inactive")

    return ActorContext.from_user(user)


def raise_for_outcome(success: bool, code: Optional[ErrorCode], message: str, payload: Optional[dict] = None) -> None:
    if not success:
        raise error_for_code(code, message, payload)

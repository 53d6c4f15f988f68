from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field as PydField
from sqlmodel import Session

from ..database import get_db
from ..services import notifications as ns
from ..services.context import ActorContext
from .deps import get_actor

router = APIRouter(prefix="/notifications", tags=["notifications"])


# -------------------------
# Schemas
# -------------------------

class SendRequest(BaseModel):
    user_ids: List[int] = PydField(..., min_length=1, max_length=500)
    title: str = PydField(..., min_length=1, max_length=200)
    body: str = PydField(..., min_length=1, max_length=5000)
    notification_type: str = PydField(default="general", max_length=50)
    project_id: Optional[int] = PydField(default=None, ge=1)


class BroadcastRequest(BaseModel):
    title: str = PydField(..., min_length=1, max_length=200)
    body: str = PydField(..., min_length=1, max_length=5000)
    include_clients: bool = True
    notification_type: str = PydField(default="broadcast", max_length=50)


class MarkReadRequest(BaseModel):
    # None marks everything read
    notification_ids: Optional[List[int]] = None


def _summary(results: List[ns.NotificationResult]) -> Dict[str, Any]:
    sent = [r.user_id for r in results if r.success]
    return {
        "sent": len(sent),
        "failed": len(results) - len(sent),
        "sent_to": sent,
        "results": [r.to_dict() for r in results],
    }


# -------------------------
# Routes
# -------------------------

@router.post("/send")
def send(
    payload: SendRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    results = ns.send_notifications(
        db,
        actor,
        payload.user_ids,
        payload.title,
        payload.body,
        notification_type=payload.notification_type,
        project_id=payload.project_id,
    )
    return _summary(results)


@router.post("/broadcast")
def broadcast(
    payload: BroadcastRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    results = ns.broadcast(
        db,
        actor,
        payload.title,
        payload.body,
        include_clients=payload.include_clients,
        notification_type=payload.notification_type,
    )
    return _summary(results)


@router.get("/mine")
def mine(
    unread_only: bool = False,
    limit: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> List[Dict[str, Any]]:
    return [n.model_dump() for n in ns.list_notifications(db, actor.user_id, unread_only=unread_only, limit=limit)]


@router.put("/mark-read")
def mark_read(
    payload: MarkReadRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    return {"updated": ns.mark_read(db, actor.user_id, payload.notification_ids)}

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..config import settings
from ..models.notification import Notification
from ..models.user import User, UserRole, utcnow
from .context import ActorContext
from .errors import DatabaseError, ValidationError
from .hierarchy_engine import get_descendant_ids, get_hierarchy_row, is_subordinate

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = "Permission denied: Cannot send notification to this user"


@dataclass(frozen=True)
class NotificationResult:
    user_id: int
    success: bool
    error: Optional[str] = None
    notification_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "success": self.success,
            "error": self.error,
            "notification_id": self.notification_id,
        }


def can_send_notification(session: Session, sender: ActorContext, target: User) -> bool:
    """
    Anyone may notify themselves; super agents may notify anyone; super
    workers their subordinates; agents their subordinate clients.
    """
    if sender.user_id == target.id or sender.is_super_agent:
        return True
    if sender.role == UserRole.SUPER_WORKER:
        return is_subordinate(session, sender.user_id, target.id)
    if sender.role == UserRole.AGENT:
        return target.role == UserRole.CLIENT and is_subordinate(session, sender.user_id, target.id)
    return False


def _dedupe(ids: Iterable[int]) -> List[int]:
    seen = set()
    out = []
    for i in ids:
        i = int(i)
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def send_notifications(
    session: Session,
    sender: ActorContext,
    target_ids: Iterable[int],
    title: str,
    body: str,
    *,
    notification_type: str = "general",
    project_id: Optional[int] = None,
) -> List[NotificationResult]:
    """
    Fan a notification out to target_ids.

    Each target gets its own result; refused targets do not block the
    others. All permitted rows are written in one commit.
    """
    title = (title or "").strip()
    body = (body or "").strip()
    if not title or not body:
        raise ValidationError("Notification title and body are required.")

    targets = _dedupe(target_ids)
    if not targets:
        raise ValidationError("At least one recipient is required.")

    sender_row = get_hierarchy_row(session, sender.user_id)
    sender_level = sender_row.hierarchy_level if sender_row else None

    results: List[Optional[NotificationResult]] = []
    pending: List[Notification] = []
    for uid in targets:
        user = session.get(User, uid)
        if user is None:
            results.append(NotificationResult(uid, False, "User not found"))
            continue
        if not can_send_notification(session, sender, user):
            results.append(NotificationResult(uid, False, PERMISSION_DENIED_MESSAGE))
            continue
        row = Notification(
            user_id=uid,
            sender_id=sender.user_id,
            title=title,
            body=body,
            notification_type=(notification_type or "general").strip() or "general",
            project_id=project_id,
            sender_hierarchy_level=sender_level,
            delivery_status="delivered",
        )
        pending.append(row)
        results.append(None)

    if pending:
        try:
            session.add_all(pending)
            session.commit()
            for row in pending:
                session.refresh(row)
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception("Notification fan-out rolled back sender_id=%s", sender.user_id)
            raise DatabaseError("Failed to send notifications") from e

    sent = iter(pending)
    out: List[NotificationResult] = []
    for uid, res in zip(targets, results):
        if res is None:
            row = next(sent)
            res = NotificationResult(uid, True, None, row.id)
        out.append(res)

    logger.info(
        "Notification from user_id=%s: %s sent, %s refused",
        sender.user_id,
        len(pending),
        len(out) - len(pending),
    )
    return out


def broadcast(
    session: Session,
    sender: ActorContext,
    title: str,
    body: str,
    *,
    include_clients: bool = True,
    notification_type: str = "broadcast",
) -> List[NotificationResult]:
    """
    Notify every active subordinate the sender may reach.
    """
    team = get_descendant_ids(session, sender.user_id)
    if not team:
        return []

    stmt = select(User).where(User.id.in_(team), User.is_active == True)  # noqa: E712
    if not include_clients:
        stmt = stmt.where(User.role != UserRole.CLIENT)

    reachable = [u.id for u in session.exec(stmt).all() if can_send_notification(session, sender, u)]
    if not reachable:
        return []
    return send_notifications(
        session, sender, sorted(reachable), title, body, notification_type=notification_type
    )


def list_notifications(
    session: Session,
    user_id: int,
    *,
    unread_only: bool = False,
    limit: Optional[int] = None,
) -> List[Notification]:
    cap = settings.notification_page_limit
    n = cap if limit is None else max(1, min(int(limit), cap))

    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read == False)  # noqa: E712
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(n)
    return list(session.exec(stmt).all())


def mark_read(session: Session, user_id: int, notification_ids: Optional[Iterable[int]] = None) -> int:
    """
    Mark the caller's notifications read. No ids = all unread.
    Ids belonging to other users are ignored.
    """
    stmt = select(Notification).where(
        Notification.user_id == user_id,
        Notification.is_read == False,  # noqa: E712
    )
    if notification_ids is not None:
        ids = _dedupe(notification_ids)
        if not ids:
            return 0
        stmt = stmt.where(Notification.id.in_(ids))

    rows = list(session.exec(stmt).all())
    if not rows:
        return 0

    now = utcnow()
    try:
        for row in rows:
            row.is_read = True
            row.read_at = now
            session.add(row)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Mark-read rolled back user_id=%s", user_id)
        raise DatabaseError("Failed to update notifications") from e
    return len(rows)

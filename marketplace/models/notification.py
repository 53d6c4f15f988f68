from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from .user import utcnow


class Notification(SQLModel, table=True):
    """
    A notification row written by the hierarchy fan-out.
    Delivery (push/email) happens elsewhere and reads these rows.
    """

    __tablename__ = "notifications"

    id: Optional[int] = Field(default=None, primary_key=True)

    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    sender_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)

    title: str
    body: str
    notification_type: str = Field(default="general", index=True)
    project_id: Optional[int] = Field(default=None, foreign_key="projects.id", index=True)

    sender_hierarchy_level: Optional[int] = None
    delivery_status: str = Field(default="delivered", index=True)

    is_read: bool = Field(default=False, index=True)
    read_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)

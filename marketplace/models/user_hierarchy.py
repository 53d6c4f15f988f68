from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from .user import utcnow


class UserHierarchy(SQLModel, table=True):
    """
    One row per user: the recruitment tree edge to its parent.

      parent (recruiter) -> user (recruit)

    - hierarchy_level: root (super agent) = 1, child = parent + 1, max 5
    - super_agent_id: root of the tree this user belongs to
    - root rows have parent_id = NULL and super_agent_id = user_id
    """

    __tablename__ = "user_hierarchy"

    id: Optional[int] = Field(default=None, primary_key=True)

    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True, unique=True)
    parent_id: Optional[int] = Field(default=None, foreign_key="users.id", ondelete="SET NULL", index=True)

    hierarchy_level: int = Field(default=1, index=True)
    super_agent_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class HierarchyChangeLog(SQLModel, table=True):
    """
    Append-only audit of hierarchy moves.
    """

    __tablename__ = "hierarchy_change_log"

    id: Optional[int] = Field(default=None, primary_key=True)

    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    old_parent_id: Optional[int] = Field(default=None, index=True)
    new_parent_id: Optional[int] = Field(default=None, index=True)

    old_hierarchy_level: Optional[int] = None
    new_hierarchy_level: int

    changed_by: int = Field(foreign_key="users.id", index=True)
    change_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, index=True)

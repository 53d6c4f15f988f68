from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from .user import UserRole, utcnow


class AssignmentType(str, Enum):
    """
    The role slot on a project being filled.
    """

    WORKER = "worker"
    SUB_WORKER = "sub_worker"
    AGENT = "agent"
    SUB_AGENT = "sub_agent"


class ProjectAssignmentHistory(SQLModel, table=True):
    """
    Append-only log of project slot assignments.

    One open row (effective_until = NULL) per (project_id, assignment_type);
    a new assignment closes the previous open row first.
    """

    __tablename__ = "project_assignment_history"

    id: Optional[int] = Field(default=None, primary_key=True)

    project_id: int = Field(foreign_key="projects.id", ondelete="CASCADE", index=True)
    assignment_type: AssignmentType = Field(index=True)

    assigned_to_id: int = Field(foreign_key="users.id", index=True)
    assigned_to_role: UserRole
    assigned_by_id: int = Field(foreign_key="users.id", index=True)
    assigned_by_role: UserRole

    previous_assigned_to_id: Optional[int] = Field(default=None)

    assignment_reason: Optional[str] = None
    assignment_notes: Optional[str] = None

    hierarchy_level: Optional[int] = None
    is_valid_hierarchy: bool = Field(default=True)
    validation_notes: Optional[str] = None

    assigned_at: datetime = Field(default_factory=utcnow, index=True)
    effective_until: Optional[datetime] = Field(default=None, index=True)

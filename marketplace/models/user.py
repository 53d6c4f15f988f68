from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    # timezone-aware UTC for every stored timestamp
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    """
    Marketplace roles. Values are API-stable strings.

    Tree shape (root first):
    - SUPER_AGENT: owns a tree, prices on the flat system table
    - AGENT: recruits clients, prices on a personal rate
    - SUPER_WORKER: manages workers, sits under an agent
    - WORKER: fulfils projects
    - CLIENT: submits projects
    """

    SUPER_AGENT = "super_agent"
    AGENT = "agent"
    SUPER_WORKER = "super_worker"
    WORKER = "worker"
    CLIENT = "client"


class User(SQLModel, table=True):
    """
    A marketplace account.

    Notes:
    - role is fixed at creation; there is no role-change operation.
    - reference_code_used keeps the recruitment code a registrant signed up
      with (codes are read, never consumed).
    """

    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)

    full_name: str
    email: str = Field(index=True, unique=True)

    role: UserRole = Field(index=True)
    is_active: bool = Field(default=True, index=True)

    reference_code_used: Optional[str] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utcnow, index=True)

    def is_root_role(self) -> bool:
        return self.role == UserRole.SUPER_AGENT

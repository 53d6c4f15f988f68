from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from .user import utcnow


class CodeType(str, Enum):
    """
    What a recruitment code places its registrant as.
    """

    AGENT_RECRUITMENT = "agent_recruitment"
    CLIENT_RECRUITMENT = "client_recruitment"
    WORKER_RECRUITMENT = "worker_recruitment"


class ReferenceCode(SQLModel, table=True):
    """
    Recruitment code binding a registrant to the owner's position in the tree.

    - Codes are deactivated, never deleted (uniqueness covers inactive rows too).
    - Registering with a code reads it; it stays active for the next registrant.
    - expires_at is optional; NULL means the code only dies by deactivation.
    """

    __tablename__ = "reference_codes"

    id: Optional[int] = Field(default=None, primary_key=True)

    code: str = Field(index=True, unique=True)
    owner_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    code_type: CodeType = Field(index=True)

    is_active: bool = Field(default=True, index=True)
    expires_at: Optional[datetime] = Field(default=None, index=True)
    deactivated_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)

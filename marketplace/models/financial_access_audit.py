from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from .user import utcnow


class FinancialAccessAudit(SQLModel, table=True):
    __tablename__ = "financial_access_audit"

    id: Optional[int] = Field(default=None, primary_key=True)

    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    user_role: str = Field(index=True)

    # e.g. "project_list", "project_detail", "financial_summary"
    access_type: str = Field(index=True)
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None

    success: bool = Field(default=True, index=True)
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, index=True)

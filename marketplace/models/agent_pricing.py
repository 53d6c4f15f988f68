from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import SQLModel, Field

from .user import utcnow


class AgentPricingConfig(SQLModel, table=True):
    """
    Per-agent linear pricing, versioned in place.

    The current row for an agent is the one with effective_until = NULL; an
    update stamps that row and inserts a new one, so at most one open row
    exists per agent and superseded rows stay for audit.
    """

    __tablename__ = "agent_pricing"

    id: Optional[int] = Field(default=None, primary_key=True)

    agent_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)

    min_word_count: int = Field(default=500)
    max_word_count: int = Field(default=20000)
    base_rate_per_500_words: Decimal = Field(default=Decimal("6.25"), max_digits=8, decimal_places=2)
    agent_fee_percentage: Decimal = Field(default=Decimal("15.00"), max_digits=5, decimal_places=2)

    updated_by: Optional[int] = Field(default=None, foreign_key="users.id")
    change_reason: Optional[str] = None

    effective_from: datetime = Field(default_factory=utcnow, index=True)
    effective_until: Optional[datetime] = Field(default=None, index=True)

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import SQLModel, Field

from .user import utcnow


MONEY = dict(max_digits=12, decimal_places=2)


class Project(SQLModel, table=True):
    """
    A written-work project submitted by a client.

    Money columns are written from a pricing quote at creation time and are
    never edited directly. Role slots (agent_id, sub_agent_id, worker_id,
    sub_worker_id) are filled through the assignment service so every change
    lands in project_assignment_history.
    """

    __tablename__ = "projects"

    id: Optional[int] = Field(default=None, primary_key=True)

    title: str
    client_id: int = Field(foreign_key="users.id", index=True)

    agent_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    sub_agent_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    worker_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    sub_worker_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)

    word_count: int
    deadline: datetime = Field(index=True)

    # Status transitions are owned outside this service; stored as-is.
    status: str = Field(default="pending", index=True)

    # Pricing snapshot
    pricing_model: str = Field(default="flat")  # flat | agent_rate
    urgency_level: str = Field(default="normal")
    base_price: Decimal = Field(default=Decimal("0"), **MONEY)
    deadline_charge: Decimal = Field(default=Decimal("0"), **MONEY)
    cost_gbp: Decimal = Field(default=Decimal("0"), **MONEY)
    agent_fee: Optional[Decimal] = Field(default=None, **MONEY)
    super_worker_fee: Optional[Decimal] = Field(default=None, **MONEY)
    worker_fee: Optional[Decimal] = Field(default=None, **MONEY)
    system_total: Optional[Decimal] = Field(default=None, **MONEY)
    profit_margin: Optional[Decimal] = Field(default=None, **MONEY)
    system_profit: Optional[Decimal] = Field(default=None, **MONEY)

    assigned_by: Optional[int] = Field(default=None, foreign_key="users.id")
    assigned_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field as PydField
from sqlmodel import Session

from ..database import get_db
from ..models.user import User, UserRole
from ..services import financial_filter as ff
from ..services import pricing_engine as pe
from ..services.context import ActorContext
from ..services.hierarchy_engine import can_view_user, is_subordinate
from .deps import get_actor

router = APIRouter(prefix="/pricing", tags=["pricing"])


# -------------------------
# Schemas
# -------------------------

class QuoteRequest(BaseModel):
    """
    agent_id: price on that agent's rate.
    client_id: price the way that client's projects are priced.
    neither: flat system table.
    """
    word_count: int
    deadline: Optional[datetime] = None
    agent_id: Optional[int] = PydField(default=None, ge=1)
    client_id: Optional[int] = PydField(default=None, ge=1)


class PricingConfigIn(BaseModel):
    min_word_count: int = pe.SYSTEM_MIN_WORDS
    max_word_count: int = pe.SYSTEM_MAX_WORDS
    base_rate_per_500_words: Decimal
    agent_fee_percentage: Decimal
    change_reason: Optional[str] = PydField(default=None, max_length=500)


# -------------------------
# Helpers
# -------------------------

def _config_out(rate: pe.AgentRate, row: Any = None) -> Dict[str, Any]:
    out = rate.to_dict()
    if row is not None:
        out.update(
            {
                "id": row.id,
                "agent_id": row.agent_id,
                "effective_from": row.effective_from,
                "effective_until": row.effective_until,
                "updated_by": row.updated_by,
                "change_reason": row.change_reason,
            }
        )
    return out


def _require_agent_access(db: Session, actor: ActorContext, agent_id: int) -> User:
    agent = db.get(User, agent_id)
    if not agent or agent.role != UserRole.AGENT:
        raise HTTPException(status_code=404, detail="Agent not found")
    if actor.user_id == agent_id or actor.is_super_agent:
        return agent
    # Clients may read the rate they are priced on.
    if actor.role == UserRole.CLIENT and is_subordinate(db, agent_id, actor.user_id):
        return agent
    raise HTTPException(status_code=403, detail="You cannot view this agent's pricing")


# -------------------------
# Routes
# -------------------------

@router.post("/calculate")
def calculate(
    payload: QuoteRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    if payload.agent_id is not None:
        _require_agent_access(db, actor, payload.agent_id)
        rate = pe.effective_agent_rate(db, payload.agent_id)
        quote = pe.calculate_price(payload.word_count, payload.deadline, rate)
    elif payload.client_id is not None:
        if not can_view_user(db, actor, payload.client_id):
            raise HTTPException(status_code=403, detail="You cannot quote for this client")
        quote = pe.quote_for_client(db, payload.client_id, payload.word_count, payload.deadline)
    else:
        quote = pe.calculate_price(payload.word_count, payload.deadline)
    return ff.filter_quote(quote.to_dict(), actor.role)


@router.get("/system-rates")
def system_rates(actor: ActorContext = Depends(get_actor)) -> Dict[str, Any]:
    return {
        "schedule": pe.DEFAULT_SCHEDULE.to_dict(),
        "default_agent_rate": pe.DEFAULT_AGENT_RATE.to_dict(),
    }


@router.get("/agents/{agent_id}")
def get_agent_pricing(
    agent_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    _require_agent_access(db, actor, agent_id)
    row = pe.get_agent_pricing(db, agent_id)
    if row is None:
        out = _config_out(pe.DEFAULT_AGENT_RATE)
    else:
        out = _config_out(pe.AgentRate.from_config(row), row)
    # Clients see the word-count bounds, not the rate or fee.
    return ff.filter_user_financial_fields(dict(out, user_id=agent_id), actor.role, actor.user_id)


@router.put("/agents/{agent_id}")
def update_agent_pricing(
    agent_id: int,
    payload: PricingConfigIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Dict[str, Any]:
    row, check = pe.update_agent_pricing(
        db,
        actor,
        agent_id,
        min_word_count=payload.min_word_count,
        max_word_count=payload.max_word_count,
        base_rate_per_500_words=payload.base_rate_per_500_words,
        agent_fee_percentage=payload.agent_fee_percentage,
        change_reason=payload.change_reason,
    )
    return {"config": _config_out(pe.AgentRate.from_config(row), row), "warnings": check.warnings}


@router.get("/agents/{agent_id}/history")
def agent_pricing_history(
    agent_id: int,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> List[Dict[str, Any]]:
    if actor.user_id != agent_id and not actor.is_super_agent:
        raise HTTPException(status_code=403, detail="You cannot view this agent's pricing history")
    return [_config_out(pe.AgentRate.from_config(r), r) for r in pe.pricing_history(db, agent_id)]


@router.post("/validate-config")
def validate_config(payload: PricingConfigIn, actor: ActorContext = Depends(get_actor)) -> Dict[str, Any]:
    return pe.validate_pricing_config(
        payload.min_word_count,
        payload.max_word_count,
        payload.base_rate_per_500_words,
        payload.agent_fee_percentage,
    ).to_dict()

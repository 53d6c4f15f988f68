from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..models.agent_pricing import AgentPricingConfig
from ..models.user import User, UserRole, utcnow
from .clock import ensure_utc, resolve_now
from .context import ActorContext
from .errors import DatabaseError, ErrorCode, NotFound, PermissionDenied, ValidationError
from .hierarchy_engine import get_hierarchy_row

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

SYSTEM_MIN_WORDS = 500
SYSTEM_MAX_WORDS = 20000
WORDS_PER_UNIT = 500


def to_money(v: Any) -> Decimal:
    if isinstance(v, Decimal):
        d = v
    else:
        d = Decimal(str(v))
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


# -------------------------
# Schedule (explicit, swappable in tests)
# -------------------------

@dataclass(frozen=True)
class PriceTier:
    max_words: int
    price: Decimal


@dataclass(frozen=True)
class UrgencyBand:
    """
    max_days is inclusive; None closes the table (everything beyond).
    """
    max_days: Optional[int]
    charge: Decimal
    level: str


@dataclass(frozen=True)
class PricingSchedule:
    tiers: Tuple[PriceTier, ...]
    urgency_bands: Tuple[UrgencyBand, ...]
    version: str = "system-v1"

    @property
    def max_words(self) -> int:
        return self.tiers[-1].max_words if self.tiers else 0

    def base_price(self, word_count: int) -> Decimal:
        for tier in self.tiers:
            if word_count <= tier.max_words:
                return to_money(tier.price)
        raise ValidationError(
            f"Word count must be between 1 and {self.max_words} words.",
            details={"min_word_count": 1, "max_word_count": self.max_words},
        )

    def urgency_for(self, days: int) -> UrgencyBand:
        for band in self.urgency_bands:
            if band.max_days is None or days <= band.max_days:
                return band
        return self.urgency_bands[-1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "tiers": [{"max_words": t.max_words, "price": to_money(t.price)} for t in self.tiers],
            "urgency": [
                {"max_days": b.max_days, "charge": to_money(b.charge), "level": b.level}
                for b in self.urgency_bands
            ],
        }


def _default_tiers() -> Tuple[PriceTier, ...]:
    # First six bands are irregular; from 3000 words it is +10 per 500.
    head = [(500, 45), (1000, 55), (1500, 65), (2000, 70), (2500, 85), (3000, 100)]
    tiers = [PriceTier(w, Decimal(p)) for w, p in head]
    price = 100
    for words in range(3500, SYSTEM_MAX_WORDS + 1, WORDS_PER_UNIT):
        price += 10
        tiers.append(PriceTier(words, Decimal(price)))
    return tuple(tiers)


DEFAULT_URGENCY_BANDS: Tuple[UrgencyBand, ...] = (
    UrgencyBand(1, Decimal("30"), "rush"),
    UrgencyBand(2, Decimal("10"), "urgent"),
    UrgencyBand(6, Decimal("5"), "moderate"),
    UrgencyBand(None, Decimal("0"), "normal"),
)

DEFAULT_SCHEDULE = PricingSchedule(tiers=_default_tiers(), urgency_bands=DEFAULT_URGENCY_BANDS)


@dataclass(frozen=True)
class AgentRate:
    """
    The pricing knobs an agent controls. Mirrors AgentPricingConfig without
    the versioning columns.
    """
    min_word_count: int = SYSTEM_MIN_WORDS
    max_word_count: int = SYSTEM_MAX_WORDS
    base_rate_per_500_words: Decimal = Decimal("6.25")
    agent_fee_percentage: Decimal = Decimal("15.00")
    is_default: bool = False

    @classmethod
    def from_config(cls, cfg: AgentPricingConfig) -> "AgentRate":
        return cls(
            min_word_count=int(cfg.min_word_count),
            max_word_count=int(cfg.max_word_count),
            base_rate_per_500_words=Decimal(str(cfg.base_rate_per_500_words)),
            agent_fee_percentage=Decimal(str(cfg.agent_fee_percentage)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_word_count": self.min_word_count,
            "max_word_count": self.max_word_count,
            "base_rate_per_500_words": to_money(self.base_rate_per_500_words),
            "agent_fee_percentage": to_money(self.agent_fee_percentage),
            "is_default": self.is_default,
        }


DEFAULT_AGENT_RATE = AgentRate(is_default=True)


# -------------------------
# Results
# -------------------------

@dataclass(frozen=True)
class FeeSplits:
    agent_fee: Decimal
    super_worker_fee: Decimal
    worker_fee: Decimal
    client_total: Decimal
    system_total: Decimal

    def to_dict(self) -> Dict[str, Decimal]:
        return {
            "agent_fee": self.agent_fee,
            "super_worker_fee": self.super_worker_fee,
            "worker_fee": self.worker_fee,
            "client_total": self.client_total,
            "system_total": self.system_total,
        }


@dataclass(frozen=True)
class PriceQuote:
    """
    A computed price.

    - base_cost: flat table price, or ceil(words / 500) * rate on the agent path
    - urgency_charge / urgency_level: from days until the deadline
    - total_cost: what the client pays (agent path adds the agent fee)
    - fee_splits: only on the agent path; None for flat pricing
    """
    word_count: int
    base_cost: Decimal
    urgency_charge: Decimal
    urgency_level: str
    total_cost: Decimal
    pricing_model: str
    days_until_deadline: Optional[int] = None
    fee_splits: Optional[FeeSplits] = None
    schedule_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word_count": self.word_count,
            "base_cost": self.base_cost,
            "urgency_charge": self.urgency_charge,
            "urgency_level": self.urgency_level,
            "total_cost": self.total_cost,
            "pricing_model": self.pricing_model,
            "days_until_deadline": self.days_until_deadline,
            "fee_splits": self.fee_splits.to_dict() if self.fee_splits else None,
            "schedule_version": self.schedule_version,
        }


@dataclass(frozen=True)
class ConfigValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


# -------------------------
# Pure functions
# -------------------------

def days_until(deadline: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole days until the deadline, rounded up. Past deadlines go to 0 or below.
    """
    delta = ensure_utc(deadline) - resolve_now(now)
    return math.ceil(delta.total_seconds() / 86400)


def _check_word_count(word_count: Any) -> int:
    if isinstance(word_count, bool) or not isinstance(word_count, int):
        raise ValidationError("Word count must be a whole number.")
    return word_count


def validate_pricing_config(
    min_word_count: int,
    max_word_count: int,
    base_rate_per_500_words: Any,
    agent_fee_percentage: Any,
) -> ConfigValidation:
    errors: List[str] = []
    warnings: List[str] = []

    rate = Decimal(str(base_rate_per_500_words))
    pct = Decimal(str(agent_fee_percentage))

    if min_word_count < SYSTEM_MIN_WORDS:
        errors.append(f"Minimum word count cannot be less than {SYSTEM_MIN_WORDS}.")
    if max_word_count > SYSTEM_MAX_WORDS:
        errors.append(f"Maximum word count cannot exceed {SYSTEM_MAX_WORDS}.")
    if min_word_count >= max_word_count:
        errors.append("Minimum word count must be less than maximum word count.")
    if rate <= 0:
        errors.append("Base rate must be greater than 0.")
    if pct < 0 or pct > 100:
        errors.append("Agent fee percentage must be between 0 and 100.")

    if rate > 0 and rate < 5:
        warnings.append("Base rate is below £5 per 500 words, which may not cover worker costs.")
    if rate > 15:
        warnings.append("Base rate is above £15 per 500 words, which may price out clients.")
    if pct > 25:
        warnings.append("Agent fee above 25% may make quotes uncompetitive.")

    return ConfigValidation(valid=not errors, errors=errors, warnings=warnings)


def calculate_price(
    word_count: int,
    deadline: Optional[datetime],
    agent_config: Optional[AgentRate] = None,
    *,
    now: Optional[datetime] = None,
    schedule: PricingSchedule = DEFAULT_SCHEDULE,
) -> PriceQuote:
    """
    Price a project.

    - agent_config None: flat system table (super agent pricing).
    - agent_config given: linear agent rate, bounded by the agent's
      min/max word count, with the fee split across roles.

    A missing deadline means no urgency charge.
    """
    wc = _check_word_count(word_count)

    if deadline is not None:
        days: Optional[int] = days_until(deadline, now)
        band = schedule.urgency_for(days)
        urgency_charge = to_money(band.charge)
        urgency_level = band.level
    else:
        days = None
        urgency_charge = to_money(0)
        urgency_level = "normal"

    if agent_config is None:
        if wc < 1 or wc > schedule.max_words:
            raise ValidationError(
                f"Word count must be between 1 and {schedule.max_words} words.",
                details={"min_word_count": 1, "max_word_count": schedule.max_words},
            )
        base = schedule.base_price(wc)
        return PriceQuote(
            word_count=wc,
            base_cost=base,
            urgency_charge=urgency_charge,
            urgency_level=urgency_level,
            total_cost=to_money(base + urgency_charge),
            pricing_model="flat",
            days_until_deadline=days,
            schedule_version=schedule.version,
        )

    check = validate_pricing_config(
        agent_config.min_word_count,
        agent_config.max_word_count,
        agent_config.base_rate_per_500_words,
        agent_config.agent_fee_percentage,
    )
    if not check.valid:
        raise ValidationError("; ".join(check.errors), details={"errors": check.errors})

    if wc < agent_config.min_word_count or wc > agent_config.max_word_count:
        raise ValidationError(
            f"Word count must be between {agent_config.min_word_count} and {agent_config.max_word_count} words.",
            details={"min_word_count": agent_config.min_word_count, "max_word_count": agent_config.max_word_count},
        )

    units = math.ceil(wc / WORDS_PER_UNIT)
    base = to_money(Decimal(units) * Decimal(str(agent_config.base_rate_per_500_words)))
    agent_fee = to_money(base * Decimal(str(agent_config.agent_fee_percentage)) / Decimal(100))
    client_total = to_money(base + agent_fee)
    splits = FeeSplits(
        agent_fee=agent_fee,
        super_worker_fee=base,
        worker_fee=base,
        client_total=client_total,
        system_total=to_money(client_total + base + base),
    )
    return PriceQuote(
        word_count=wc,
        base_cost=base,
        urgency_charge=urgency_charge,
        urgency_level=urgency_level,
        total_cost=to_money(client_total + urgency_charge),
        pricing_model="agent_rate",
        days_until_deadline=days,
        fee_splits=splits,
    )


# -------------------------
# Agent pricing store
# -------------------------

def get_agent_pricing(session: Session, agent_id: int, *, for_update: bool = False) -> Optional[AgentPricingConfig]:
    stmt = select(AgentPricingConfig).where(
        AgentPricingConfig.agent_id == agent_id,
        AgentPricingConfig.effective_until == None,  # noqa: E711
    )
    if for_update:
        stmt = stmt.with_for_update()
    return session.exec(stmt.order_by(AgentPricingConfig.effective_from.desc())).first()


def effective_agent_rate(session: Session, agent_id: int) -> AgentRate:
    cfg = get_agent_pricing(session, agent_id)
    if cfg is None:
        return DEFAULT_AGENT_RATE
    return AgentRate.from_config(cfg)


def _load_agent(session: Session, agent_id: int) -> User:
    agent = session.get(User, agent_id)
    if not agent or agent.role != UserRole.AGENT:
        raise NotFound("Agent not found", ErrorCode.USER_NOT_FOUND)
    return agent


def update_agent_pricing(
    session: Session,
    actor: ActorContext,
    agent_id: int,
    *,
    min_word_count: int,
    max_word_count: int,
    base_rate_per_500_words: Any,
    agent_fee_percentage: Any,
    change_reason: Optional[str] = None,
) -> Tuple[AgentPricingConfig, ConfigValidation]:
    """
    Supersede the agent's open pricing row with a new one.

    The open row is locked, stamped with effective_until and the new row is
    inserted in the same commit, so an agent never has two open rows.
    """
    if actor.user_id != agent_id and not actor.is_super_agent:
        raise PermissionDenied("You can only change your own pricing.")

    _load_agent(session, agent_id)

    check = validate_pricing_config(min_word_count, max_word_count, base_rate_per_500_words, agent_fee_percentage)
    if not check.valid:
        raise ValidationError("; ".join(check.errors), details={"errors": check.errors, "warnings": check.warnings})

    now = utcnow()
    try:
        current = get_agent_pricing(session, agent_id, for_update=True)
        if current is not None:
            current.effective_until = now
            session.add(current)
            session.flush()

        row = AgentPricingConfig(
            agent_id=agent_id,
            min_word_count=int(min_word_count),
            max_word_count=int(max_word_count),
            base_rate_per_500_words=to_money(base_rate_per_500_words),
            agent_fee_percentage=to_money(agent_fee_percentage),
            updated_by=actor.user_id,
            change_reason=(change_reason or "").strip() or None,
            effective_from=now,
        )
        session.add(row)
        session.commit()
        session.refresh(row)
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Agent pricing update rolled back agent_id=%s", agent_id)
        raise DatabaseError("Failed to update agent pricing") from e

    logger.info(
        "Agent pricing updated agent_id=%s rate=%s fee=%s%% by user_id=%s",
        agent_id,
        row.base_rate_per_500_words,
        row.agent_fee_percentage,
        actor.user_id,
    )
    return row, check


def pricing_history(session: Session, agent_id: int, limit: int = 50) -> List[AgentPricingConfig]:
    stmt = (
        select(AgentPricingConfig)
        .where(AgentPricingConfig.agent_id == agent_id)
        .order_by(AgentPricingConfig.effective_from.desc(), AgentPricingConfig.id.desc())
        .limit(max(1, min(int(limit), 500)))
    )
    return list(session.exec(stmt).all())


def pricing_agent_for_client(session: Session, client_id: int) -> Optional[User]:
    """
    The agent whose rate applies to a client: the client's direct parent
    when that parent is an agent. Clients under a super agent get flat pricing.
    """
    row = get_hierarchy_row(session, client_id)
    if row is None or row.parent_id is None:
        return None
    parent = session.get(User, row.parent_id)
    if parent and parent.role == UserRole.AGENT:
        return parent
    return None


def quote_for_client(
    session: Session,
    client_id: int,
    word_count: int,
    deadline: Optional[datetime],
    *,
    now: Optional[datetime] = None,
    schedule: PricingSchedule = DEFAULT_SCHEDULE,
) -> PriceQuote:
    agent = pricing_agent_for_client(session, client_id)
    if agent is None:
        return calculate_price(word_count, deadline, None, now=now, schedule=schedule)
    return calculate_price(word_count, deadline, effective_agent_rate(session, agent.id), now=now, schedule=schedule)

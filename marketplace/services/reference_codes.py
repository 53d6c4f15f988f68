from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from ..config import settings
from ..models.reference_code import CodeType, ReferenceCode
from ..models.user import User, UserRole, utcnow
from .clock import ensure_utc, resolve_now
from .context import ActorContext
from .errors import (
    CodeSpaceExhausted,
    DatabaseError,
    ErrorCode,
    NotFound,
    PermissionDenied,
    ValidationError,
)

logger = logging.getLogger(__name__)


# -------------------------
# Policy tables
# -------------------------

# Owner role -> (prefix, code type) pairs it issues.
RECRUITMENT_CODES: Dict[UserRole, Tuple[Tuple[str, CodeType], ...]] = {
    UserRole.SUPER_AGENT: (
        ("SA-AGT", CodeType.AGENT_RECRUITMENT),
        ("SA-CLI", CodeType.CLIENT_RECRUITMENT),
    ),
    UserRole.AGENT: (("AGT-CLI", CodeType.CLIENT_RECRUITMENT),),
    UserRole.SUPER_WORKER: (("SW-WRK", CodeType.WORKER_RECRUITMENT),),
}

# Code type -> role the registrant gets.
CODE_TYPE_ROLE: Dict[CodeType, UserRole] = {
    CodeType.AGENT_RECRUITMENT: UserRole.AGENT,
    CodeType.CLIENT_RECRUITMENT: UserRole.CLIENT,
    CodeType.WORKER_RECRUITMENT: UserRole.WORKER,
}

PREFIX_RE = re.compile(r"^[A-Z0-9]{2,8}(-[A-Z0-9]{2,8})?$")
CODE_RE = re.compile(r"^[A-Z0-9]{2,8}(-[A-Z0-9]{2,8})?-[0-9A-F]{8}$")

# Reasons returned by validate(); UIs key their messages off these.
REASON_OK = "ok"
REASON_INVALID = "invalid"
REASON_NOT_FOUND = "not_found"
REASON_INACTIVE = "inactive"
REASON_EXPIRED = "expired"


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def parse_code_type(value: Any) -> CodeType:
    if isinstance(value, CodeType):
        return value
    try:
        return CodeType(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(t.value for t in CodeType)
        raise ValidationError(f"Invalid code type '{value}'. Expected one of: {allowed}")


def default_prefix(owner_role: UserRole, code_type: CodeType) -> Optional[str]:
    for prefix, ctype in RECRUITMENT_CODES.get(UserRole(owner_role), ()):
        if ctype == code_type:
            return prefix
    return None


def _random_code(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(4).upper()}"


# -------------------------
# Validate
# -------------------------

@dataclass(frozen=True)
class CodeValidation:
    valid: bool
    reason: str
    message: str
    code: Optional[str] = None
    owner_id: Optional[int] = None
    owner_name: Optional[str] = None
    owner_role: Optional[str] = None
    code_type: Optional[str] = None
    registrant_role: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "reason": self.reason,
            "message": self.message,
            "code": self.code,
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "owner_role": self.owner_role,
            "code_type": self.code_type,
            "registrant_role": self.registrant_role,
        }


def get_by_code(session: Session, code: str) -> Optional[ReferenceCode]:
    return session.exec(select(ReferenceCode).where(ReferenceCode.code == normalize_code(code))).first()


def validate(session: Session, code: Optional[str], *, now: Optional[datetime] = None) -> CodeValidation:
    """
    Check a code a registrant typed in.

    Reasons: ok, invalid (malformed), not_found, inactive (deactivated or
    owner deactivated), expired. Reading a code never consumes it.
    """
    normalized = normalize_code(code)
    if not normalized or not CODE_RE.match(normalized):
        return CodeValidation(False, REASON_INVALID, "Reference code format is invalid.", code=normalized or None)

    row = get_by_code(session, normalized)
    if row is None:
        return CodeValidation(False, REASON_NOT_FOUND, "Reference code not found.", code=normalized)

    ctype = CodeType(row.code_type)
    extra = {"code": row.code, "owner_id": row.owner_id, "code_type": ctype.value}

    if not row.is_active:
        return CodeValidation(False, REASON_INACTIVE, "This reference code has been deactivated.", **extra)

    if row.expires_at is not None and ensure_utc(row.expires_at) <= resolve_now(now):
        return CodeValidation(False, REASON_EXPIRED, "This reference code has expired.", **extra)

    owner = session.get(User, row.owner_id)
    if owner is None or not owner.is_active:
        return CodeValidation(False, REASON_INACTIVE, "The owner of this reference code is no longer active.", **extra)

    return CodeValidation(
        True,
        REASON_OK,
        "Reference code is valid.",
        owner_name=owner.full_name,
        owner_role=UserRole(owner.role).value,
        registrant_role=CODE_TYPE_ROLE[ctype].value,
        **extra,
    )


# -------------------------
# Generate
# -------------------------

def _code_exists(session: Session, code: str) -> bool:
    return session.exec(select(ReferenceCode.id).where(ReferenceCode.code == code)).first() is not None


def _issue_terms(owner: User, ctype: CodeType, prefix: Optional[str], now: Optional[datetime]):
    role = UserRole(owner.role)
    standard = default_prefix(role, ctype)
    if standard is None:
        raise PermissionDenied(f"A {role.value} cannot issue {ctype.value} codes.")

    chosen = normalize_code(prefix) if prefix else standard
    if not PREFIX_RE.match(chosen):
        raise ValidationError("Code prefix must be 2-8 letters or digits, optionally with one dash.")

    issued_at = resolve_now(now)
    expires_at = None
    if settings.reference_code_ttl_days > 0:
        expires_at = issued_at + timedelta(days=settings.reference_code_ttl_days)
    return chosen, issued_at, expires_at


def generate(
    session: Session,
    owner_id: int,
    code_type: Any,
    prefix: Optional[str] = None,
    *,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ReferenceCode:
    """
    Issue a new code for owner_id.

    Uniqueness covers inactive codes too. A collision (seen on lookup or
    at insert via the unique index) is retried with a fresh random suffix,
    at most max_attempts times; after that CodeSpaceExhausted is raised.
    Commits its own transaction.
    """
    ctype = parse_code_type(code_type)
    owner = session.get(User, owner_id)
    if owner is None:
        raise NotFound("Code owner not found", ErrorCode.USER_NOT_FOUND)

    chosen, issued_at, expires_at = _issue_terms(owner, ctype, prefix, now)

    attempts = int(max_attempts or settings.reference_code_max_attempts)
    for attempt in range(1, attempts + 1):
        candidate = _random_code(chosen)
        if _code_exists(session, candidate):
            logger.info("Reference code collision on lookup (attempt %s/%s)", attempt, attempts)
            continue

        row = ReferenceCode(
            code=candidate,
            owner_id=owner.id,
            code_type=ctype,
            expires_at=expires_at,
            created_at=issued_at,
        )
        session.add(row)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.warning("Reference code collision on insert (attempt %s/%s)", attempt, attempts)
            continue
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception("Reference code insert failed owner_id=%s", owner.id)
            raise DatabaseError("Failed to generate reference code") from e

        session.refresh(row)
        logger.info("Issued reference code %s (%s) for user_id=%s", row.code, ctype.value, owner.id)
        return row

    raise CodeSpaceExhausted(f"Could not generate a unique reference code after {attempts} attempts.")


def add_code(
    session: Session,
    owner: User,
    code_type: Any,
    prefix: Optional[str] = None,
    *,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ReferenceCode:
    """
    Like generate(), but joins the caller's transaction: the row is flushed,
    never committed. Only lookup collisions are retried here; a clash at
    insert surfaces as IntegrityError and the caller rolls back.
    """
    ctype = parse_code_type(code_type)
    chosen, issued_at, expires_at = _issue_terms(owner, ctype, prefix, now)

    attempts = int(max_attempts or settings.reference_code_max_attempts)
    for attempt in range(1, attempts + 1):
        candidate = _random_code(chosen)
        if _code_exists(session, candidate):
            logger.info("Reference code collision on lookup (attempt %s/%s)", attempt, attempts)
            continue
        row = ReferenceCode(
            code=candidate,
            owner_id=owner.id,
            code_type=ctype,
            expires_at=expires_at,
            created_at=issued_at,
        )
        session.add(row)
        session.flush()
        return row

    raise CodeSpaceExhausted(f"Could not generate a unique reference code after {attempts} attempts.")


def issue_default_codes(session: Session, owner: User) -> List[ReferenceCode]:
    """
    Make sure owner holds one active code per type its role issues.
    Runs inside the caller's transaction; nothing is committed here.
    """
    issued: List[ReferenceCode] = []
    for prefix, ctype in RECRUITMENT_CODES.get(UserRole(owner.role), ()):
        existing = session.exec(
            select(ReferenceCode).where(
                ReferenceCode.owner_id == owner.id,
                ReferenceCode.code_type == ctype,
                ReferenceCode.is_active == True,  # noqa: E712
            )
        ).first()
        if existing is None:
            issued.append(add_code(session, owner, ctype, prefix))
    return issued


# -------------------------
# Owner operations
# -------------------------

def list_codes(session: Session, owner_id: int, *, include_inactive: bool = True) -> List[ReferenceCode]:
    stmt = select(ReferenceCode).where(ReferenceCode.owner_id == owner_id)
    if not include_inactive:
        stmt = stmt.where(ReferenceCode.is_active == True)  # noqa: E712
    return list(session.exec(stmt.order_by(ReferenceCode.created_at.desc(), ReferenceCode.id.desc())).all())


def _owned(session: Session, actor: ActorContext, code_id: int, *, allow_super_agent: bool = False) -> ReferenceCode:
    row = session.get(ReferenceCode, code_id)
    if row is None:
        raise NotFound("Reference code not found", ErrorCode.CODE_NOT_FOUND)
    if row.owner_id != actor.user_id and not (allow_super_agent and actor.is_super_agent):
        raise PermissionDenied("You can only manage your own reference codes.")
    return row


def _save(session: Session, row: ReferenceCode, action: str) -> ReferenceCode:
    try:
        session.add(row)
        session.commit()
        session.refresh(row)
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Reference code %s rolled back code_id=%s", action, row.id)
        raise DatabaseError(f"Failed to {action} reference code") from e
    logger.info("Reference code %s: %s", action, row.code)
    return row


def deactivate(session: Session, actor: ActorContext, code_id: int) -> ReferenceCode:
    row = _owned(session, actor, code_id)
    if not row.is_active:
        return row
    row.is_active = False
    row.deactivated_at = utcnow()
    return _save(session, row, "deactivate")


def reactivate(session: Session, actor: ActorContext, code_id: int) -> ReferenceCode:
    row = _owned(session, actor, code_id)
    if row.is_active:
        return row
    row.is_active = True
    row.deactivated_at = None
    return _save(session, row, "reactivate")


def regenerate(session: Session, actor: ActorContext, code_id: int) -> Tuple[ReferenceCode, ReferenceCode]:
    """
    Retire a code and issue a replacement of the same type and prefix.
    Returns (old, new).
    """
    old = _owned(session, actor, code_id)
    prefix = old.code.rsplit("-", 1)[0]
    if old.is_active:
        old = deactivate(session, actor, code_id)
    new = generate(session, old.owner_id, old.code_type, prefix)
    return old, new


def code_stats(session: Session, actor: ActorContext, code_id: int) -> Dict[str, Any]:
    row = _owned(session, actor, code_id, allow_super_agent=True)

    registrants = list(session.exec(select(User).where(User.reference_code_used == row.code)).all())
    by_role: Dict[str, int] = {}
    for u in registrants:
        key = UserRole(u.role).value
        by_role[key] = by_role.get(key, 0) + 1

    last_used = session.exec(
        select(func.max(User.created_at)).where(User.reference_code_used == row.code)
    ).first()

    return {
        "code_id": row.id,
        "code": row.code,
        "code_type": CodeType(row.code_type).value,
        "is_active": row.is_active,
        "created_at": row.created_at,
        "expires_at": row.expires_at,
        "total_registrations": len(registrants),
        "active_registrations": sum(1 for u in registrants if u.is_active),
        "registrations_by_role": by_role,
        "last_used_at": last_used,
    }

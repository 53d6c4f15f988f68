from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..models.reference_code import CodeType, ReferenceCode
from ..models.user import User, UserRole
from ..models.user_hierarchy import UserHierarchy
from .context import ActorContext
from .errors import DatabaseError, ErrorCode, MarketplaceError, NotFound, PermissionDenied, ValidationError
from .hierarchy_engine import place_root, place_user
from .reference_codes import CODE_TYPE_ROLE, get_by_code, issue_default_codes, validate

logger = logging.getLogger(__name__)


@dataclass
class Registration:
    user: User
    hierarchy: UserHierarchy
    codes: List[ReferenceCode] = field(default_factory=list)


def _clean_email(email: str) -> str:
    return (email or "").strip().lower()


def _check_new_user(session: Session, full_name: str, email: str) -> None:
    if not (full_name or "").strip():
        raise ValidationError("Full name is required.")
    if not email:
        raise ValidationError("Email is required.")
    taken = session.exec(select(User.id).where(func.lower(User.email) == email)).first()
    if taken is not None:
        raise ValidationError("An account with this email already exists.")


def _commit_new_user(
    session: Session, user: User, parent: Optional[User]
) -> Tuple[UserHierarchy, List[ReferenceCode]]:
    """
    User row, placement and default recruitment codes commit together or
    not at all.
    """
    email = user.email
    try:
        session.add(user)
        session.flush()
        row = place_root(session, user) if parent is None else place_user(session, user, parent)
        codes = issue_default_codes(session, user)
        session.commit()
        session.refresh(user)
        session.refresh(row)
        for code in codes:
            session.refresh(code)
    except MarketplaceError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("User create rolled back email=%s", email)
        raise DatabaseError("Failed to create user") from e
    return row, codes


def register_with_code(session: Session, *, full_name: str, email: str, reference_code: str) -> Registration:
    """
    Self-registration. The code decides the role and the parent (its owner);
    it stays active for the next registrant.
    """
    check = validate(session, reference_code)
    if not check.valid:
        raise ValidationError(check.message, details={"reason": check.reason})

    email = _clean_email(email)
    _check_new_user(session, full_name, email)

    code = get_by_code(session, check.code)
    owner = session.get(User, code.owner_id)
    role = CODE_TYPE_ROLE[CodeType(code.code_type)]

    user = User(
        full_name=full_name.strip(),
        email=email,
        role=role,
        reference_code_used=code.code,
    )
    row, codes = _commit_new_user(session, user, owner)

    logger.info("Registered user_id=%s as %s under user_id=%s via %s", user.id, role.value, owner.id, code.code)
    return Registration(user=user, hierarchy=row, codes=codes)


def create_staff(
    session: Session,
    actor: Optional[ActorContext],
    *,
    full_name: str,
    email: str,
    role: UserRole,
    parent_id: Optional[int] = None,
) -> Registration:
    """
    Super agents create accounts directly. A new super agent starts its own
    tree; anyone else is placed under parent_id (default: the actor).

    actor=None is only used by seeding scripts to create the first super agent.
    """
    role = UserRole(role)
    if actor is not None and not actor.is_super_agent:
        raise PermissionDenied("Only Super Agents can create accounts directly.")
    if actor is None and role != UserRole.SUPER_AGENT:
        raise PermissionDenied("Only a Super Agent can be created without an acting user.")

    email = _clean_email(email)
    _check_new_user(session, full_name, email)

    parent: Optional[User] = None
    if role != UserRole.SUPER_AGENT:
        pid = parent_id if parent_id is not None else actor.user_id
        parent = session.get(User, pid)
        if parent is None:
            raise NotFound("Parent user not found", ErrorCode.USER_NOT_FOUND)
        if not parent.is_active:
            raise ValidationError(f"{parent.full_name} is inactive and cannot receive new team members.")

    user = User(full_name=full_name.strip(), email=email, role=role)
    row, codes = _commit_new_user(session, user, parent)

    logger.info("Created %s user_id=%s under %s", role.value, user.id, parent.id if parent else "none")
    return Registration(user=user, hierarchy=row, codes=codes)

from __future__ import annotations

from dataclasses import dataclass

from ..models.user import User, UserRole


@dataclass(frozen=True)
class ActorContext:
    """
    The caller of an operation: who is acting and in which role.

    Built once per request by the API layer and passed down explicitly, so
    validators never reach for request-global state.
    """
    user_id: int
    role: UserRole
    full_name: str = ""
    is_active: bool = True

    @classmethod
    def from_user(cls, user: User) -> "ActorContext":
        return cls(
            user_id=int(user.id),
            role=UserRole(user.role),
            full_name=user.full_name,
            is_active=bool(user.is_active),
        )

    @property
    def is_super_agent(self) -> bool:
        return self.role == UserRole.SUPER_AGENT

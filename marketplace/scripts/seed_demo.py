from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlmodel import select

from marketplace.database import init_db, session_scope
from marketplace.models.user import User, UserRole
from marketplace.services.context import ActorContext
from marketplace.services.registration import create_staff

logger = logging.getLogger(__name__)


# (key, full name, email, role, parent key)
DEMO_TREE: List[tuple] = [
    ("root", "Sam Root", "sam.root@example.com", UserRole.SUPER_AGENT, None),
    ("agent", "Ada Agent", "ada.agent@example.com", UserRole.AGENT, "root"),
    ("sw", "Wes Lead", "wes.lead@example.com", UserRole.SUPER_WORKER, "agent"),
    ("worker", "Will Writer", "will.writer@example.com", UserRole.WORKER, "sw"),
    ("client", "Cleo Client", "cleo.client@example.com", UserRole.CLIENT, "agent"),
]


def _existing(session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == email)).first()


def seed(session) -> Dict[str, int]:
    """
    Idempotent: users that already exist (by email) are reused.
    """
    ids: Dict[str, int] = {}
    root_actor: Optional[ActorContext] = None

    for key, name, email, role, parent_key in DEMO_TREE:
        user = _existing(session, email)
        if user is None:
            reg = create_staff(
                session,
                root_actor,
                full_name=name,
                email=email,
                role=role,
                parent_id=ids.get(parent_key) if parent_key else None,
            )
            user = reg.user
            logger.info("Seeded %s (%s) id=%s", name, role.value, user.id)
        ids[key] = int(user.id)
        if key == "root":
            root_actor = ActorContext.from_user(user)

    return ids


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    init_db()
    with session_scope() as session:
        ids = seed(session)
    print(f"Seeded demo tree: {ids}")


if __name__ == "__main__":
    main()

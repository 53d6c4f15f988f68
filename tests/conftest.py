"""Pytest configuration and fixtures for marketplace tests.

Every test gets a fresh in-memory SQLite database and a standard tree:

    root (super_agent, L1)
    ├── agent_a (agent, L2)
    │   ├── lead_a (super_worker, L3)
    │   │   └── worker_a (worker, L4)
    │   └── client_a (client, L3)
    └── agent_b (agent, L2)
        ├── lead_b (super_worker, L3)
        │   └── worker_b (worker, L4)
        └── client_b (client, L3)
"""

from __future__ import annotations

import os

# Must be set before marketplace.config is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite://"

from types import SimpleNamespace
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from marketplace.database import get_db, init_db, install_sqlite_pragmas
from marketplace.main import create_app
from marketplace.models.user import User, UserRole
from marketplace.services.context import ActorContext
from marketplace.services.registration import create_staff


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    install_sqlite_pragmas(eng)
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


def as_actor(user: User) -> ActorContext:
    return ActorContext.from_user(user)


def make_user(session: Session, actor, name: str, role: UserRole, parent: User = None) -> User:
    email = name.lower().replace(" ", ".") + "@example.com"
    reg = create_staff(
        session,
        as_actor(actor) if actor is not None else None,
        full_name=name,
        email=email,
        role=role,
        parent_id=parent.id if parent is not None else None,
    )
    return reg.user


@pytest.fixture
def tree(session) -> SimpleNamespace:
    """The standard two-branch tree from the module docstring."""
    root = make_user(session, None, "Root Boss", UserRole.SUPER_AGENT)
    agent_a = make_user(session, root, "Agent A", UserRole.AGENT, root)
    agent_b = make_user(session, root, "Agent B", UserRole.AGENT, root)
    lead_a = make_user(session, root, "Lead A", UserRole.SUPER_WORKER, agent_a)
    lead_b = make_user(session, root, "Lead B", UserRole.SUPER_WORKER, agent_b)
    worker_a = make_user(session, root, "Worker A", UserRole.WORKER, lead_a)
    worker_b = make_user(session, root, "Worker B", UserRole.WORKER, lead_b)
    client_a = make_user(session, root, "Client A", UserRole.CLIENT, agent_a)
    client_b = make_user(session, root, "Client B", UserRole.CLIENT, agent_b)
    return SimpleNamespace(
        root=root,
        agent_a=agent_a,
        agent_b=agent_b,
        lead_a=lead_a,
        lead_b=lead_b,
        worker_a=worker_a,
        worker_b=worker_b,
        client_a=client_a,
        client_b=client_b,
    )


@pytest.fixture
def client(session) -> TestClient:
    app = create_app()

    def _override_get_db():
        yield session

    app.dependency_overrides[get_db] = _override_get_db
    return TestClient(app)


def auth(user: User) -> Dict[str, str]:
    return {"X-User-Id": str(user.id)}

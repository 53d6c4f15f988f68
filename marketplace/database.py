from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from .config import settings

logger = logging.getLogger(__name__)


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _is_postgres(database_url: str) -> bool:
    return database_url.startswith("postgresql")


def _ensure_sqlite_dir(database_url: str) -> None:
    """
    Ensure the parent folder exists for SQLite file-based DB URLs like:
      sqlite:///./data/marketplace.sqlite
      sqlite:////absolute/path/to/db.sqlite
    """
    if not database_url.startswith("sqlite:///"):
        return

    path = database_url.replace("sqlite:///", "", 1)
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)


def install_sqlite_pragmas(engine: Engine) -> None:
    """
    Pragmas for SQLite. foreign_keys=ON matters here: hierarchy rows cascade
    with their user and parent ids must point at real users.
    """

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute("PRAGMA busy_timeout=5000;")
        cursor.close()


def _postgres_session_settings(engine: Engine) -> None:
    """
    Per-connection settings for Postgres: bound runaway queries and make sure
    a blocked row lock (move/assign) fails instead of waiting forever.
    """

    @event.listens_for(engine, "connect")
    def _set_postgres_settings(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("SET statement_timeout = 30000;")
        cursor.execute("SET lock_timeout = 10000;")
        cursor.close()


def get_engine() -> Engine:
    """
    Create and return the SQLAlchemy engine.

    - Uses settings.resolved_database_url (DATABASE_URL or DB_PATH)
    - SQLite gets pragmas + check_same_thread=False for FastAPI
    - Postgres runs at READ COMMITTED; moves/assignments add row locks
    """
    database_url = settings.resolved_database_url

    if _is_sqlite(database_url):
        _ensure_sqlite_dir(database_url)

    connect_args = {"check_same_thread": False} if _is_sqlite(database_url) else {}

    kwargs = {}
    if _is_postgres(database_url):
        kwargs["isolation_level"] = "READ COMMITTED"

    engine = create_engine(
        database_url,
        echo=False,
        connect_args=connect_args,
        pool_pre_ping=True,
        **kwargs,
    )

    if _is_sqlite(database_url):
        install_sqlite_pragmas(engine)

    if _is_postgres(database_url):
        _postgres_session_settings(engine)

    return engine


# Single, shared engine for the app process
engine: Engine = get_engine()


def register_models() -> None:
    """
    Central place to import ALL models so SQLModel registers them.
    Keep this list current as tables are added.
    """
    from .models.user import User  # noqa: F401
    from .models.user_hierarchy import HierarchyChangeLog, UserHierarchy  # noqa: F401
    from .models.reference_code import ReferenceCode  # noqa: F401
    from .models.project import Project  # noqa: F401
    from .models.agent_pricing import AgentPricingConfig  # noqa: F401
    from .models.assignment_history import ProjectAssignmentHistory  # noqa: F401
    from .models.notification import Notification  # noqa: F401
    from .models.financial_access_audit import FinancialAccessAudit  # noqa: F401


def init_db(create_tables: bool = True, bind: Engine | None = None) -> None:
    """
    Register models, then create missing tables.
    Non-destructive: create_all will not drop or alter existing tables.
    """
    register_models()
    if create_tables:
        SQLModel.metadata.create_all(bind or engine)
        logger.info("Database tables ensured")


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency:
        def route(db: Session = Depends(get_db)):
            ...
    Ensures the session is closed after each request.
    """
    with Session(engine) as session:
        yield session


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Context manager for scripts/jobs that need commit/rollback safety.

    Usage:
        with session_scope() as db:
            db.add(...)
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

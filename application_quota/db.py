"""
Database engine and session helpers.

Every store access is bounded by QUOTA_STORE_TIMEOUT_SECONDS: SQLite waits
at most that long on a locked database and PostgreSQL cancels statements
that run longer.
"""

import logging
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_database_url, get_store_timeout_seconds

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def build_engine(database_url: Optional[str] = None, **kwargs) -> Engine:
    """Create an engine with a bounded store timeout for the given URL."""
    url = database_url or get_database_url()
    timeout = get_store_timeout_seconds()
    connect_args = dict(kwargs.pop("connect_args", {}))

    if url.startswith("sqlite"):
        connect_args.setdefault("timeout", timeout)
        connect_args.setdefault("check_same_thread", False)
    elif url.startswith("postgresql"):
        connect_args.setdefault("connect_timeout", max(1, int(timeout)))
        connect_args.setdefault("options", f"-c statement_timeout={int(timeout * 1000)}")

    return create_engine(url, connect_args=connect_args, **kwargs)


def create_schema(engine: Engine) -> None:
    """Create all quota tables that do not exist yet."""
    from . import tables  # noqa: F401  (registers models on Base.metadata)

    Base.metadata.create_all(engine)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = build_engine()
        logger.info("Created database engine", extra={"dialect": _engine.dialect.name})
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory


def get_db_session() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()

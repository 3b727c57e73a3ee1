import logging
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from recruitboard.db.base import Base

logger = logging.getLogger(__name__)


def make_engine(database_url: str) -> Engine:
    """Build an engine for the given URL.

    In-memory SQLite gets a single shared connection so every session sees
    the same database.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(
        database_url,
        pool_pre_ping=True,
        connect_args={"connect_timeout": 30} if database_url.startswith("postgresql://") else {}
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine
    )


def init_db(engine: Engine) -> None:
    """Initialize database - create tables.
    If DB is temporarily unreachable, skip creation to allow the API to start; reads will fail until DB returns.
    """
    # Table classes register themselves on Base.metadata at import
    from recruitboard.models import tables  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.warning("init_db_create_all_failed", extra={"error": str(e)})

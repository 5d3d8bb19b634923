"""Database engine construction and schema setup."""
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from mental_buddy.config import settings


def make_engine(url: Optional[str] = None) -> Engine:
    """
    Build the SQLAlchemy engine for the given URL.

    SQLite connections are shared across threads because FastAPI runs sync
    routes in a threadpool. In-memory SQLite uses a single static connection
    so every session sees the same database.
    """
    url = url or settings.DATABASE_URL
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    # Register table metadata before create_all
    from mental_buddy.models import conversation  # noqa: F401

    SQLModel.metadata.create_all(engine)

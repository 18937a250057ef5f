from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import load_settings

# Get DB connection string from environment variables.
DATABASE_URL = load_settings().database_url


def make_engine(url: str):
    """Creates an engine; in-memory SQLite shares a single connection."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(bind):
    # Aggregates are handed back after commit, so keep their loaded state.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


# Create the SQLAlchemy engine.
engine = make_engine(DATABASE_URL)

# Create a configured "Session" class for database interactions.
SessionLocal = make_session_factory(engine)

# Base class for declarative ORM models.
Base = declarative_base()

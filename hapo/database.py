"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request

Backends:
  The same models run against the local SQLite file (the fallback store) and a
  hosted PostgreSQL database. Only DATABASE_URL changes between the two.

Session lifecycle:
  Each API request gets its own session via get_db(). The session commits on
  success and rolls back on unexpected exceptions. Balance updates and their
  transaction rows are flushed in the same session, so they commit together.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from hapo.config import settings
from hapo.exceptions import HapoError


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)

# expire_on_commit=False prevents lazy-load errors after commit in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...

    Domain errors still commit: an expired verification code is deleted on
    first access and that deletion must survive the error response.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except HapoError:
            await session.commit()
            raise
        except Exception:
            await session.rollback()
            raise

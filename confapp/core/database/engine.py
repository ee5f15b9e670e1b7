"""
Database engine configuration and session management.

Current: SQLite (async with aiosqlite)
Production: PostgreSQL (asyncpg), switched through DATABASE_URL only.
"""
from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from confapp.core import config

engine = create_async_engine(
    config.SQLALCHEMY_DATABASE_URL,
    # NullPool for SQLite to avoid connection pool issues
    poolclass=NullPool if config.SQLALCHEMY_DATABASE_URL.startswith("sqlite") else None,
    echo=False,
    future=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    One request is one unit of work: services only flush, and the session is
    committed here once the route returns. Any exception rolls everything back,
    so a status change can never be persisted without its timeline event.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def import_models() -> None:
    """Import all models so they are registered on Base.metadata."""
    from confapp.features.users.models import User, AuthorProfile  # noqa: F401
    from confapp.features.organizations.models import (  # noqa: F401
        Organization, Conference, Track, ConferenceSettings
    )
    from confapp.features.permissions.models import (  # noqa: F401
        OrgMembership, ConferenceMembership, TrackMembership
    )
    from confapp.features.submissions.models import (  # noqa: F401
        Submission, SubmissionFile, SubmissionTimelineEvent
    )
    from confapp.features.payments.models import PaymentIntent  # noqa: F401
    from confapp.features.ai.models import ConsentRecord, AIReport, AnalysisJob  # noqa: F401


async def init_db():
    """
    Initialize database tables.
    Call this on application startup to create all tables.
    """
    from confapp.core.database.base import Base

    import_models()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

"""Async database engine and session factory."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from dealwatch.config import settings


def create_engine(database_url: str | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine; keyword arguments override the pool defaults."""
    url = database_url or settings.database_url

    engine_kwargs: dict = {"echo": settings.debug}
    # SQLite doesn't support pool_size / max_overflow / pool_pre_ping
    if not url.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=settings.max_parallel_refreshes + 5,
            max_overflow=10,
            pool_pre_ping=True,
        )
    engine_kwargs.update(kwargs)

    return create_async_engine(url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

"""
Async database setup with SQLAlchemy and aiosqlite.
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy import text

from episode_audio.config import DATABASE_URL, DATABASE_BUSY_TIMEOUT, ensure_directories
from episode_audio.models import Base


def build_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """
    Create an async engine.

    SQLite connections get a busy timeout so concurrent workers queue on the
    write lock instead of failing their conditional updates.
    """
    connect_args = {}
    if url.startswith('sqlite'):
        connect_args['timeout'] = DATABASE_BUSY_TIMEOUT
    return create_async_engine(url, echo=False, future=True, connect_args=connect_args)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# Create async engine
engine = build_engine()


# Session factory
async_session_factory = build_session_factory(engine)


async def enable_wal_mode(target: AsyncEngine = engine):
    """Enable WAL mode for SQLite concurrent read/write access."""
    if not str(target.url).startswith('sqlite'):
        return
    async with target.begin() as conn:
        await conn.execute(text('PRAGMA journal_mode=WAL'))
        await conn.execute(text('PRAGMA synchronous=NORMAL'))


async def init_db(target: AsyncEngine = engine):
    """Initialize database - create tables if they don't exist."""
    ensure_directories()

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Enable WAL mode after tables are created
    await enable_wal_mode(target)


async def close_db(target: AsyncEngine = engine):
    """Close database connections."""
    await target.dispose()


async def get_db():
    """
    Dependency that provides an async database session.

    Usage:
        @router.get('/segments')
        async def list_segments(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings
from app.db.locking import use_immediate_transactions


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """
    Async engine for the ledger database. pool_pre_ping drops connections the server
    closed while idle; pool_recycle retires them after 5 minutes. On SQLite every
    transaction starts with BEGIN IMMEDIATE (see app.db.locking).
    """
    engine = create_async_engine(
        database_url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_recycle=300,
        **kwargs,
    )
    use_immediate_transactions(engine)
    return engine


engine = build_engine(settings.database_url)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from interview_scheduling.core.config import settings
from interview_scheduling.db.base import Base


engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)
SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


async def get_session() -> AsyncSession:
    async with SessionLocal() as session:
        yield session


async def init_models() -> None:
    import interview_scheduling.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

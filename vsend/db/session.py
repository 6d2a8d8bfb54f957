from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from vsend.models import Base


def create_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # Records are handed back to callers after commit
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """
    Creates any missing tables. Production deployments are expected to run
    migrations instead; this keeps local and test databases usable.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

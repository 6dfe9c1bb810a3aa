from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from jobchat import config


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    # Objects stay readable after commit; they are serialized after the
    # transaction ends.
    return async_sessionmaker(bind, expire_on_commit=False)


async def create_tables(bind: AsyncEngine) -> None:
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = build_engine(config.DATABASE_URL)
AsyncSessionLocal = build_session_factory(engine)

import asyncio

from jobchat import models  # noqa: F401  registers tables on Base.metadata
from jobchat.database import create_tables, engine


async def init():
    await create_tables(engine)
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init())

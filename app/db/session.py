from typing import Awaitable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from app.config.config import settings

T = TypeVar("T")

engine = create_async_engine(
    settings.DATABASE_URL, future=True, echo=settings.DATABASE_ECHO)
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def in_savepoint(db: AsyncSession, query: Awaitable[T]) -> T:
    """
    Await a read inside a SAVEPOINT.

    A statement that fails here is rolled back to the savepoint, so the
    outer transaction stays usable for the writes that follow it.
    """
    async with db.begin_nested():
        return await query

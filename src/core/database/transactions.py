from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession


@asynccontextmanager
async def safe_begin(session: AsyncSession) -> AsyncGenerator[None]:
    """
    Transactional scope that composes: a fresh session gets BEGIN/COMMIT,
    a session already inside a transaction gets a SAVEPOINT so a failure
    rolls back only this block.
    """
    if session.in_transaction():
        async with session.begin_nested():
            yield
    else:
        async with session.begin():
            yield

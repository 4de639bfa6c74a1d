"""Unit-of-work helper: run a coroutine inside one DB transaction, with retries."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.domain.exceptions import ConcurrentModification

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    attempts: int = 1,
) -> T:
    """
    Execute ``work(session)`` in a fresh session and transaction.

    Commits on success, rolls back on any error.  ``ConcurrentModification``
    restarts the whole unit from a fresh read, at most *attempts* times.
    """
    for attempt in range(1, attempts + 1):
        try:
            async with session_factory() as session:
                async with session.begin():
                    return await work(session)
        except ConcurrentModification:
            if attempt >= attempts:
                raise
            logger.info(
                "Concurrent modification, retrying (attempt %d/%d)",
                attempt + 1,
                attempts,
            )
    raise ConcurrentModification()

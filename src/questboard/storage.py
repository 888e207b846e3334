"""Retry policy for storage failures.

Only operations that are idempotent by construction (winner computation,
distribution marking, leaderboard rebuild) go through ``retry_idempotent``;
they are retried once after a short backoff. Everything else surfaces the
failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.config import get_settings
from questboard.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_transient(exc: DBAPIError) -> bool:
    return not isinstance(exc, IntegrityError)


async def retry_idempotent(
    db: AsyncSession,
    operation: Callable[..., Awaitable[T]],
    *args: object,
    **kwargs: object,
) -> T:
    """Run ``operation(db, *args, **kwargs)``, retrying once on a transient DB error."""
    try:
        return await operation(db, *args, **kwargs)
    except DBAPIError as exc:
        if not _is_transient(exc):
            raise
        logger.warning("%s failed (%s), retrying once", operation.__name__, exc.orig)
        await db.rollback()

    await asyncio.sleep(get_settings().storage_retry_backoff_seconds)
    try:
        return await operation(db, *args, **kwargs)
    except DBAPIError as exc:
        await db.rollback()
        logger.error("%s failed after retry: %s", operation.__name__, exc.orig)
        raise StorageError() from exc

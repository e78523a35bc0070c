"""Bounded retries for read operations.

Only reads go through here. Mutations are never retried so a lost
acknowledgement can not turn into a duplicate claim or version; callers
resubmit and rely on the idempotence of `claim`.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (OperationalError, OSError)


async def retry_read(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 0.05,
    name: str = "read",
) -> T:
    """Run a read operation, retrying transient storage failures.

    The delay doubles after each failed attempt (`base_delay * 2 ** attempt`).
    The last transient failure is re-raised once `attempts` is exhausted.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return await operation()
        except TRANSIENT_ERRORS as e:
            if attempt + 1 >= attempts:
                raise
            delay = base_delay * (2**attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.3fs: %s",
                name,
                attempt + 1,
                attempts,
                delay,
                e,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")

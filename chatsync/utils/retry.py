import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar


logger = logging.getLogger(__name__)

R = TypeVar("R")


async def call_with_retry(
    func: Callable[[], Awaitable[R]],
    *,
    max_attempts: int = 3,
    backoff_seconds: float = 0.05,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation: str = "operation",
) -> R:
    """
    Await ``func`` until it succeeds or ``max_attempts`` is reached.

    Waits ``backoff_seconds * 2**attempt`` between attempts and re-raises the
    last error once attempts are exhausted. Exceptions outside ``retry_on``
    propagate immediately.
    """
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return await func()
        except retry_on as exc:
            if attempt >= attempts - 1:
                logger.error("All %s attempts failed for %s: %s", attempts, operation, exc)
                raise
            wait_time = backoff_seconds * (2 ** attempt)
            logger.warning(
                "Attempt %s/%s failed for %s: %s. Retrying in %.2fs",
                attempt + 1, attempts, operation, exc, wait_time,
            )
            await asyncio.sleep(wait_time)
    raise RuntimeError("Retry loop exited without a result")

import asyncio
from collections.abc import Callable
from functools import wraps
import inspect
from typing import Any, TypeVar, cast

from loggers import get_logger

logger = get_logger(__name__)


F = TypeVar("F", bound=Callable[..., Any])


def with_retries(
    max_retries: int = 3,
    delay: float = 2,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> Callable[[F], F]:
    """
    Retry an async function up to `max_retries` times when it raises one of `retry_on`.

    The delay between retries increases linearly: `delay * attempt_number`.
    Exceptions outside `retry_on` propagate immediately. Only apply this to
    idempotent calls: a retried POST may have reached the server already.

    Example:
        @with_retries(max_retries=3, delay=0.2, retry_on=(httpx.TransportError,))
        async def fetch_roles(): ...
    """

    def decorator(func: F) -> F:
        if not inspect.iscoroutinefunction(func):
            raise TypeError("with_retries supports async functions only")

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    logger.warning(
                        "[RETRY] Async function '%s' attempt %s/%s failed: %s",
                        func.__name__,
                        attempt,
                        max_retries,
                        type(e).__name__,
                    )
                    if attempt < max_retries:
                        await asyncio.sleep(delay * attempt)
                    else:
                        raise

        return cast(F, async_wrapper)

    return decorator

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar, Generic

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryPolicy(Generic[T]):
    def __init__(
        self,
        max_retries: int = 3,
        delay: float = 1.0,
        backoff_factor: float = 2.0,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    ):
        self.max_retries = max_retries
        self.delay = delay
        self.backoff_factor = backoff_factor
        self.retry_on = retry_on

    async def execute_with_retry(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        current_delay = self.delay
        for attempt in range(self.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except self.retry_on as e:
                if attempt < self.max_retries:
                    logger.debug("attempt %d failed (%s), retrying in %.2fs", attempt + 1, e, current_delay)
                    await asyncio.sleep(current_delay)
                    current_delay *= self.backoff_factor
                else:
                    raise

"""Retry logic with exponential backoff"""

import time
from typing import Callable, Any, Tuple, Type
from src.utils.logging import get_logger
from src.utils.errors import IntelligenceError

logger = get_logger(__name__)


def retry_with_exponential_backoff(
    func: Callable,
    max_retries: int = 3,
    base_delay: float = 1,
    max_delay: float = 30,
    *args,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    **kwargs
) -> Any:
    """
    Retry function with exponential backoff

    Args:
        func: Function to retry
        max_retries: Maximum retry attempts
        base_delay: Base delay in seconds
        max_delay: Max delay cap in seconds
        retry_on: Exception types worth retrying; anything else propagates
        *args, **kwargs: Arguments to pass to func

    Returns:
        Function result

    Raises:
        IntelligenceError: If all retries exhausted
    """
    for attempt in range(max_retries):
        try:
            return func(*args, **kwargs)

        except retry_on as e:
            if attempt == max_retries - 1:
                logger.error(f"All {max_retries} retry attempts exhausted", function=getattr(func, "__name__", "?"))
                raise IntelligenceError(f"Failed after {max_retries} attempts: {e}") from e

            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(f"Attempt {attempt + 1} failed, retrying in {delay}s: {e}")
            time.sleep(delay)

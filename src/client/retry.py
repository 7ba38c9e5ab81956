"""Bounded exponential-backoff retry policy shared by every remote call."""

import logging

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import HttpConfig

logger = logging.getLogger(__name__)


def retry_policy(
    config: HttpConfig,
    retry_on: type[BaseException] | tuple[type[BaseException], ...],
) -> AsyncRetrying:
    """Retry ``retry_on`` up to ``max_retries`` times, then re-raise the last error.

    Anything not matching ``retry_on`` propagates on the first attempt.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(config.max_retries + 1),
        wait=wait_exponential(multiplier=config.backoff_base_s, max=config.backoff_max_s),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )

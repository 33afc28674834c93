"""
Retry policy with exponential backoff for calls that can fail transiently.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from errors import TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """Retries TransientIOError up to *max_attempts* total calls; anything else propagates at once."""

    max_attempts: int = 3
    backoff: float = 1.0
    max_backoff: float = 30.0
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_settings(cls, settings) -> 'RetryPolicy':
        return cls(settings.max_attempts, settings.retry_backoff, settings.retry_max_backoff)

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, max=self.max_backoff),
            retry=retry_if_exception_type(TransientIOError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return self.retrying()(func, *args, **kwargs)

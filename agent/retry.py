"""
Retry with exponential backoff for async operations.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Pattern, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_PATTERNS: List[Pattern] = [
    re.compile(r"rate.*limit", re.IGNORECASE),
    re.compile(r"timeout|timed out", re.IGNORECASE),
    re.compile(r"ECONNRESET|connection reset", re.IGNORECASE),
    re.compile(r"throttl", re.IGNORECASE),
    re.compile(r"service (error|unavailable)|temporarily unavailable", re.IGNORECASE),
    re.compile(r"network error", re.IGNORECASE),
]


@dataclass
class RetryOptions:
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_patterns: List[Pattern] = field(default_factory=lambda: list(DEFAULT_RETRYABLE_PATTERNS))

    @classmethod
    def from_config(cls, config: Any) -> "RetryOptions":
        return cls(
            max_retries=config.retry_max_retries,
            initial_delay=config.retry_initial_delay,
            max_delay=config.retry_max_delay,
            backoff_multiplier=config.retry_backoff_multiplier,
        )

    def is_retryable(self, exc: BaseException) -> bool:
        message = str(exc)
        return any(p.search(message) for p in self.retryable_patterns)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run `operation`, retrying errors whose message matches a retryable pattern.

    Up to ``max_retries`` retries after the first attempt. The delay starts at
    ``initial_delay`` and is multiplied by ``backoff_multiplier`` after each
    retry, capped at ``max_delay``. An error carrying ``retry_after`` waits that
    long instead (still capped). The last error is re-raised unchanged.
    """
    opts = options or RetryOptions()
    delay = opts.initial_delay
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= opts.max_retries or not opts.is_retryable(e):
                raise
            attempt += 1
            wait_secs = delay
            retry_after = getattr(e, "retry_after", None)
            if retry_after is not None:
                wait_secs = max(wait_secs, float(retry_after))
            wait_secs = min(wait_secs, opts.max_delay)
            logger.warning(
                f"Retryable error (attempt {attempt}/{opts.max_retries}), "
                f"waiting {wait_secs:.1f}s: {e}"
            )
            await sleep(wait_secs)
            delay = min(delay * opts.backoff_multiplier, opts.max_delay)

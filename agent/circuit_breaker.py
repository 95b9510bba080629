"""
Circuit breakers for flaky dependencies (LLM providers, remote services).

CLOSED passes calls through. After ``failure_threshold`` consecutive failures
the breaker OPENs and rejects calls without invoking them until
``reset_timeout`` has elapsed; it then lets calls through in HALF_OPEN and
closes again after ``success_threshold`` consecutive successes. Any failure
in HALF_OPEN reopens it.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .errors import CircuitOpenError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout: float = 60.0          # seconds allowed per call
    reset_timeout: float = 60.0    # seconds OPEN before trying HALF_OPEN

    @classmethod
    def from_config(cls, config: Any) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=config.breaker_failure_threshold,
            success_threshold=config.breaker_success_threshold,
            timeout=config.breaker_timeout,
            reset_timeout=config.breaker_reset_timeout,
        )


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.next_attempt_at = 0.0
        self.last_failure_at: Optional[float] = None

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.state == CircuitState.OPEN:
            now = self._clock()
            if now < self.next_attempt_at:
                raise CircuitOpenError(self.name, self.next_attempt_at - now)
            self.state = CircuitState.HALF_OPEN
            self.success_count = 0
            logger.info(f"Circuit breaker {self.name} entering HALF_OPEN")

        try:
            result = await asyncio.wait_for(operation(), timeout=self.config.timeout)
        except asyncio.TimeoutError:
            self._on_failure()
            raise TransientError(
                f"Operation timeout after {self.config.timeout:g}s ({self.name})",
                code="timeout",
                details={"breaker": self.name},
            )
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        self.failure_count = 0
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self.state = CircuitState.CLOSED
                self.success_count = 0
                logger.info(f"Circuit breaker {self.name} CLOSED")

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_at = self._clock()
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.config.failure_threshold:
            self._trip()

    def _trip(self) -> None:
        self.state = CircuitState.OPEN
        self.success_count = 0
        self.next_attempt_at = self._clock() + self.config.reset_timeout
        logger.warning(
            f"Circuit breaker {self.name} OPEN after {self.failure_count} failures, "
            f"retry in {self.config.reset_timeout:g}s"
        )

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.next_attempt_at = 0.0
        self.last_failure_at = None

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "next_attempt_at": self.next_attempt_at,
            "last_failure_at": self.last_failure_at,
            "config": asdict(self.config),
        }


class CircuitBreakerRegistry:
    """Named breakers shared by every consumer of the same dependency."""

    def __init__(
        self,
        defaults: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.defaults = defaults or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str, **overrides: Any) -> CircuitBreaker:
        """Return the breaker for `name`, creating it on first use.

        Overrides only apply when the breaker is created.
        """
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                cfg = CircuitBreakerConfig(**{**asdict(self.defaults), **overrides})
                breaker = CircuitBreaker(name, cfg, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def reset_all(self) -> None:
        with self._lock:
            for breaker in self._breakers.values():
                breaker.reset()

    def stats(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: b.stats() for name, b in self._breakers.items()}

"""Failure containment for everything outside the call-stage core.

Three pieces, shared by the classifier, the stage handlers, TTS and the
spreadsheet store:

* ``CircuitBreaker`` skips a down service for a cooldown period after
  repeated failures.
* ``attempt()`` runs an async operation and returns a fallback value instead
  of raising, recording the outcome on an optional breaker.
* ``with_timeout()`` races an awaitable against a hard deadline; the losing
  operation is cancelled so a late result is discarded.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CircuitBreaker:
    """Closed -> open (after N failures) -> half-open (after cooldown)."""

    failure_threshold: int = 3
    cooldown_seconds: float = 60.0
    label: str = "service"

    _consecutive_failures: int = field(default=0, init=False, repr=False)
    _opened_at: Optional[float] = field(default=None, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        return not self.should_try()

    def should_try(self) -> bool:
        if self._consecutive_failures < self.failure_threshold:
            return True
        # Open: allow a single probe once the cooldown has elapsed
        if self._opened_at and (time.monotonic() - self._opened_at) >= self.cooldown_seconds:
            return True
        return False

    def record_success(self) -> None:
        self._consecutive_failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.failure_threshold:
            if self._opened_at is None:
                logger.warning(
                    "Circuit breaker OPENED for %s after %d consecutive failures, "
                    "skipping for %.0fs",
                    self.label,
                    self._consecutive_failures,
                    self.cooldown_seconds,
                )
            # A failed half-open probe restarts the cooldown
            self._opened_at = time.monotonic()


async def with_timeout(awaitable: Awaitable[T], seconds: float) -> T:
    """Await with a hard deadline. Raises ``asyncio.TimeoutError`` on expiry."""
    return await asyncio.wait_for(awaitable, timeout=seconds)


async def attempt(
    operation: Callable[[], Awaitable[T]],
    fallback: Any,
    *,
    label: str,
    circuit: Optional[CircuitBreaker] = None,
    timeout: Optional[float] = None,
) -> T:
    """Run ``operation`` and return ``fallback`` if it fails in any way.

    ``fallback`` may be a plain value or a zero-argument callable producing
    one, for fallbacks that must be computed lazily.
    """
    if circuit is not None and not circuit.should_try():
        logger.warning("%s skipped: circuit open", label)
        return _resolve(fallback)
    try:
        if timeout is not None:
            result = await with_timeout(operation(), timeout)
        else:
            result = await operation()
    except asyncio.TimeoutError:
        if circuit is not None:
            circuit.record_failure()
        logger.warning("%s timed out after %.1fs", label, timeout)
        return _resolve(fallback)
    except Exception as e:
        if circuit is not None:
            circuit.record_failure()
        logger.error("%s failed: %s", label, e)
        return _resolve(fallback)
    if circuit is not None:
        circuit.record_success()
    return result


def _resolve(fallback: Any) -> Any:
    return fallback() if callable(fallback) else fallback

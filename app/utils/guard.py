import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from app.domain.errors import RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RATE_LIMIT_RE = re.compile(r"rate limit", re.IGNORECASE)
_TRY_AGAIN_RE = re.compile(r"try again in (\d+(?:\.\d+)?) seconds?", re.IGNORECASE)


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitedError):
        return True
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        return True
    if getattr(exc, "status_code", None) == 429:
        return True
    if getattr(exc, "code", None) == "RATE_LIMIT_EXCEEDED":
        return True
    return bool(_RATE_LIMIT_RE.search(str(exc)))


def retry_delay(exc: BaseException, default: float) -> float:
    """Seconds to back off: explicit hint, then the message, then `default`."""
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        return max(0.0, float(retry_after))

    if isinstance(exc, httpx.HTTPStatusError):
        header = exc.response.headers.get("Retry-After")
        if header:
            try:
                return max(0.0, float(header))
            except ValueError:
                pass

    match = _TRY_AGAIN_RE.search(str(exc))
    if match:
        return float(match.group(1))
    return default


class ConcurrencyGuard:
    """
    Wraps calls to the store and to external services.

    - Concurrent calls with the same key share one in-flight task.
    - A rate-limit signal blocks every call through this guard until the
      back-off expires, then the failed action is retried (once by default).
    """

    def __init__(
        self,
        default_backoff: float = 2.0,
        max_retries: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.default_backoff = default_backoff
        self.max_retries = max_retries
        self._clock = clock
        self._sleep = sleep
        self._inflight: dict[str, asyncio.Future] = {}
        self._blocked_until = 0.0

    @property
    def blocked_for(self) -> float:
        return max(0.0, self._blocked_until - self._clock())

    def inflight_count(self) -> int:
        return len(self._inflight)

    async def run(self, key: str, action: Callable[[], Awaitable[T]], max_retries: Optional[int] = None) -> T:
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug(f"Joining in-flight call for key={key}")
            return await asyncio.shield(existing)

        retries = self.max_retries if max_retries is None else max_retries
        task = asyncio.ensure_future(self._execute(key, action, retries))
        self._inflight[key] = task
        task.add_done_callback(lambda t: self._forget(key, t))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _execute(self, key: str, action: Callable[[], Awaitable[T]], retries: int) -> T:
        attempt = 0
        while True:
            wait = self.blocked_for
            if wait > 0:
                await self._sleep(wait)
            try:
                return await action()
            except Exception as e:
                if not is_rate_limited(e):
                    raise
                delay = retry_delay(e, self.default_backoff)
                self._blocked_until = max(self._blocked_until, self._clock() + delay)
                if attempt >= retries:
                    raise
                attempt += 1
                logger.warning(f"Rate limited on key={key}, backing off {delay:.1f}s (retry {attempt}/{retries})")

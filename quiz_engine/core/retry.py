"""
Rate limiting and opt-in retry policies for AI grading provider calls
"""
import time
from typing import Callable, Dict, List, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_random_exponential,
)

import logging as py_logging
from quiz_engine.config import settings
from quiz_engine.schemas import GradingResponse, RateLimitInfo

py_logger = py_logging.getLogger(__name__)


class ProviderRateLimiter:
    """Sliding-window limiter keyed by provider (default 10 calls / 60s)."""

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests or settings.ai_grading_rate_limit
        self.window_seconds = window_seconds or settings.ai_grading_rate_window_seconds
        self.clock = clock
        self._timestamps: Dict[str, List[float]] = {}

    def _cleanup(self, provider: str) -> List[float]:
        now = self.clock()
        recent = [t for t in self._timestamps.get(provider, []) if now - t < self.window_seconds]
        self._timestamps[provider] = recent
        return recent

    def can_make_request(self, provider: str) -> bool:
        return len(self._cleanup(provider)) < self.max_requests

    def record_request(self, provider: str) -> None:
        self._cleanup(provider).append(self.clock())

    def time_until_next_slot_ms(self, provider: str) -> int:
        """Milliseconds until a slot frees up (0 when a request can go now)."""
        timestamps = self._cleanup(provider)
        if len(timestamps) < self.max_requests or not timestamps:
            return 0
        remaining = self.window_seconds - (self.clock() - timestamps[0])
        return max(0, int(remaining * 1000))

    def get_rate_limit_info(self, provider: str) -> RateLimitInfo:
        timestamps = self._cleanup(provider)
        return RateLimitInfo(
            can_request=len(timestamps) < self.max_requests,
            wait_time_ms=self.time_until_next_slot_ms(provider),
            request_count=len(timestamps),
        )

    def reset(self, provider: Optional[str] = None) -> None:
        if provider:
            self._timestamps.pop(provider, None)
        else:
            self._timestamps.clear()


def is_transient_failure(response: GradingResponse) -> bool:
    """Provider failures worth another attempt (not missing keys or rate limits)."""
    return (
        not response.success
        and not response.needs_api_key
        and response.wait_time_ms is None
    )


def get_grading_retry(max_attempts: int, wait=None) -> AsyncRetrying:
    """Retry policy re-running failed grading requests; returns the last response when exhausted."""
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait or wait_random_exponential(multiplier=0.5, max=8),
        retry=retry_if_result(is_transient_failure),
        before_sleep=before_sleep_log(py_logger, py_logging.WARNING),
        retry_error_callback=lambda state: state.outcome.result(),
    )


# Server-side singleton
grading_rate_limiter = ProviderRateLimiter()


def get_rate_limiter() -> ProviderRateLimiter:
    return grading_rate_limiter

"""
Fixed-window admission rate limiter.

Each origin gets a counter and a window start. The first hit opens a window
of `window_ms` milliseconds; at most `max_requests` hits are allowed inside
it, after which the origin is rejected until the window elapses and a new
one opens on the next hit.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcp_tasks.config import RateLimitConfig

# Prune expired windows once this many origins are tracked
_PRUNE_THRESHOLD = 1024


@dataclass
class _Window:
    started_at: float
    count: int


class FixedWindowRateLimiter:
    """
    Per-origin fixed window counter.

    Example:
        >>> limiter = FixedWindowRateLimiter(max_requests=2, window_ms=1000)
        >>> limiter.allow("10.0.0.1"), limiter.allow("10.0.0.1"), limiter.allow("10.0.0.1")
        (True, True, False)
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_ms: int = 15 * 60 * 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_ms < 1:
            raise ValueError("window_ms must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_ms / 1000.0
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> FixedWindowRateLimiter:
        return cls(max_requests=config.max_requests, window_ms=config.window_ms)

    def _current_window(self, origin: str, now: float) -> _Window:
        window = self._windows.get(origin)
        if window is None or now - window.started_at >= self.window_seconds:
            window = _Window(started_at=now, count=0)
            self._windows[origin] = window
        return window

    def allow(self, origin: str) -> bool:
        """
        Record one hit for the origin.

        Returns:
            True if the hit is within the limit, False if rejected.
        """
        now = self._clock()
        if len(self._windows) >= _PRUNE_THRESHOLD:
            self._prune(now)

        window = self._current_window(origin, now)
        if window.count >= self.max_requests:
            return False
        window.count += 1
        return True

    def remaining(self, origin: str) -> int:
        """Hits still allowed in the origin's current window."""
        window = self._windows.get(origin)
        if window is None or self._clock() - window.started_at >= self.window_seconds:
            return self.max_requests
        return max(0, self.max_requests - window.count)

    def retry_after(self, origin: str) -> float:
        """Seconds until the origin's current window rolls over (0 if open)."""
        window = self._windows.get(origin)
        if window is None:
            return 0.0
        elapsed = self._clock() - window.started_at
        return max(0.0, self.window_seconds - elapsed)

    def reset(self, origin: str | None = None) -> None:
        """Forget one origin, or every origin when none is given."""
        if origin is None:
            self._windows.clear()
        else:
            self._windows.pop(origin, None)

    def _prune(self, now: float) -> None:
        expired = [
            origin
            for origin, window in self._windows.items()
            if now - window.started_at >= self.window_seconds
        ]
        for origin in expired:
            del self._windows[origin]

    def __len__(self) -> int:
        return len(self._windows)

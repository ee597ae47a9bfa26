from __future__ import annotations


class ReconnectPolicy:
    """Two-tier retry spacing measured from when reconnection began.

    Attempts are spaced ``fast_seconds`` apart until ``tier_seconds`` have
    elapsed since ``begin``; after that every attempt waits ``slow_seconds``.
    """

    def __init__(self, fast_seconds: float = 10.0, slow_seconds: float = 30.0, tier_seconds: float = 120.0) -> None:
        self.fast_seconds = fast_seconds
        self.slow_seconds = slow_seconds
        self.tier_seconds = tier_seconds
        self._started_at: float | None = None

    @property
    def started_at(self) -> float | None:
        return self._started_at

    @property
    def active(self) -> bool:
        return self._started_at is not None

    def begin(self, now: float) -> bool:
        """Record the start moment unless already recording. Returns True if it started now."""
        if self._started_at is not None:
            return False
        self._started_at = now
        return True

    def elapsed(self, now: float) -> float:
        if self._started_at is None:
            return 0.0
        return max(0.0, now - self._started_at)

    def next_delay(self, now: float) -> float:
        if self.elapsed(now) < self.tier_seconds:
            return self.fast_seconds
        return self.slow_seconds

    def reset(self) -> None:
        self._started_at = None

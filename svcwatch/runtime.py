from __future__ import annotations

from collections import deque

from .models import CompositeStatus, RecoveryAttempt


class WatchdogState:
    """In-memory recovery history for the lifetime of one watchdog process.

    Nothing here is persisted: a restarted watchdog starts from a clean slate.
    """

    def __init__(
        self,
        backoff_factor: float = 1.0,
        backoff_max_s: float = 0.0,
        alarm_after_failures: int = 0,
        history_size: int = 20,
    ) -> None:
        self.backoff_factor = max(1.0, float(backoff_factor))
        self.backoff_max_s = max(0.0, float(backoff_max_s))
        self.alarm_after_failures = max(0, int(alarm_after_failures))
        self.last_status: CompositeStatus | None = None
        self.consecutive_failures = 0
        self.history: deque[RecoveryAttempt] = deque(maxlen=max(1, history_size))

    def mark_status(self, status: CompositeStatus) -> CompositeStatus | None:
        """Remember the latest probe result; returns the previous one."""
        prev = self.last_status
        self.last_status = status
        return prev

    def record(self, attempt: RecoveryAttempt) -> int:
        """Add a recovery attempt and return the consecutive failure count."""
        self.history.append(attempt)
        if attempt.ok:
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1
        return self.consecutive_failures

    def summary(self) -> str:
        """One-line digest of the recent recoveries, oldest first."""
        if not self.history:
            return "no recoveries this session"
        outcomes = ", ".join(a.outcome.value for a in self.history)
        return f"{len(self.history)} recent recoveries: {outcomes}; consecutive failures: {self.consecutive_failures}"

    @property
    def backoff_enabled(self) -> bool:
        return self.backoff_factor > 1.0 and self.backoff_max_s > 0

    def next_delay(self, check_interval_s: float) -> float:
        """Sleep before the next check; stretched only after failed recoveries."""
        if not self.backoff_enabled or self.consecutive_failures == 0:
            return check_interval_s
        delay = check_interval_s * self.backoff_factor ** self.consecutive_failures
        return max(check_interval_s, min(delay, self.backoff_max_s))

    def alarm_due(self) -> bool:
        """True exactly once, when consecutive failures reach the alarm threshold."""
        return self.alarm_after_failures > 0 and self.consecutive_failures == self.alarm_after_failures

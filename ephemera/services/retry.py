"""Retry and backoff policy for remote deletions."""

from dataclasses import dataclass

from ephemera.core.config import Settings

BACKOFF_STRATEGIES = ("fixed", "exponential")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry configuration: attempt ceiling plus inter-attempt delay."""

    max_attempts: int = 3
    delay_seconds: float = 5.0
    backoff: str = "fixed"

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0.")
        if self.backoff not in BACKOFF_STRATEGIES:
            raise ValueError("backoff must be 'fixed' or 'exponential'.")

    @staticmethod
    def from_settings(settings: Settings) -> "RetryPolicy":
        """Build a retry policy from cleanup settings."""
        return RetryPolicy(
            max_attempts=int(settings.CLEANUP_RETRY_ATTEMPTS),
            delay_seconds=float(settings.CLEANUP_RETRY_DELAY_SECONDS),
            backoff=str(settings.CLEANUP_RETRY_BACKOFF),
        )

    def should_retry(self, attempt: int) -> bool:
        """Return whether another attempt is permitted after ``attempt`` (1-based)."""
        return attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1.")
        if self.backoff == "exponential":
            return self.delay_seconds * (2 ** (attempt - 1))
        return self.delay_seconds

"""
Unit tests for the remote deletion retry policy.
"""
import pytest

from ephemera.core.config import Settings
from ephemera.services.retry import RetryPolicy


@pytest.mark.unit
class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.delay_seconds == 5.0

    def test_should_retry_respects_ceiling(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.should_retry(1)
        assert policy.should_retry(2)
        assert not policy.should_retry(3)

    def test_single_attempt_never_retries(self):
        assert not RetryPolicy(max_attempts=1).should_retry(1)

    def test_fixed_delay(self):
        policy = RetryPolicy(delay_seconds=2.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 2.0, 2.0]

    def test_exponential_delay(self):
        policy = RetryPolicy(delay_seconds=1.5, backoff="exponential")
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.5, 3.0, 6.0]

    @pytest.mark.parametrize("kwargs", [
        {"max_attempts": 0},
        {"delay_seconds": -1},
        {"backoff": "random"},
    ])
    def test_invalid_configuration(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_delay_for_rejects_attempt_zero(self):
        with pytest.raises(ValueError):
            RetryPolicy().delay_for(0)

    def test_from_settings(self):
        settings = Settings(
            DATABASE_URL="sqlite://",
            CLEANUP_RETRY_ATTEMPTS=5,
            CLEANUP_RETRY_DELAY_SECONDS=0.5,
            CLEANUP_RETRY_BACKOFF="exponential",
        )
        assert RetryPolicy.from_settings(settings) == RetryPolicy(5, 0.5, "exponential")

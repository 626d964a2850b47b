#!/usr/bin/env python3
"""Tests for the throttle policy.

Tests cover:
    - Classification of throttled vs fatal failures
    - Fixed backoff duration
    - Optional retry ceiling
    - Environment configuration
"""
import sys

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.mdmsync.api.exceptions import (
    APIError,
    ConfigurationError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from src.mdmsync.api.resilience import (
    DEFAULT_BACKOFF_SECONDS,
    ThrottleController,
    ThrottleVerdict,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer .env settings out of these tests."""
    monkeypatch.delenv("MDM_THROTTLE_MAX_RETRIES", raising=False)
    monkeypatch.delenv("MDM_THROTTLE_BACKOFF_SECONDS", raising=False)


# ============================================
# Classification Tests
# ============================================

class TestClassify:
    """Test ThrottleController.classify."""

    def test_rate_limit_error_is_retryable(self):
        """HTTP 429 is always a throttle."""
        throttle = ThrottleController()
        assert throttle.classify(RateLimitError()) is ThrottleVerdict.RETRYABLE

    def test_plain_429_is_retryable(self):
        """An APIError carrying 429 is retryable even if not a RateLimitError."""
        throttle = ThrottleController()
        error = APIError("Request failed", status_code=429)
        assert throttle.classify(error) is ThrottleVerdict.RETRYABLE

    @pytest.mark.parametrize(
        "body",
        [
            '{"error": {"code": "TooManyRequests"}}',
            "Too many requests, slow down",
            "Request was throttled",
            "Rate limit exceeded for tenant",
            '{"error": {"code": "activityLimitReached"}}',
        ],
    )
    def test_throttle_text_in_body_is_retryable(self, body):
        """Some endpoints report throttling in the body of a 4xx/5xx."""
        throttle = ThrottleController()
        error = ServerError("Server error (503)", status_code=503, response_body=body)
        assert throttle.classify(error) is ThrottleVerdict.RETRYABLE

    def test_throttle_text_in_message_is_retryable(self):
        throttle = ThrottleController()
        error = ValidationError("Validation failed: TooManyRequests")
        assert throttle.classify(error) is ThrottleVerdict.RETRYABLE

    @pytest.mark.parametrize(
        "error",
        [
            NotFoundError(resource_type="Group", resource_id="g1"),
            ForbiddenError("Insufficient privileges"),
            ValidationError("Invalid filter clause"),
            ServerError("Server error (500)", status_code=500, response_body="boom"),
        ],
    )
    def test_other_api_errors_are_fatal(self, error):
        throttle = ThrottleController()
        assert throttle.classify(error) is ThrottleVerdict.FATAL

    def test_non_api_errors_are_fatal(self):
        """Transport and programming errors are never waited out."""
        throttle = ThrottleController()
        assert throttle.classify(NetworkError("reset")) is ThrottleVerdict.FATAL
        assert throttle.classify(ValueError("too many requests")) is ThrottleVerdict.FATAL


# ============================================
# Backoff and Ceiling Tests
# ============================================

class TestBackoff:
    """Test backoff duration and retry ceiling."""

    def test_default_backoff_is_sixty_seconds(self):
        throttle = ThrottleController()
        assert throttle.backoff_seconds == DEFAULT_BACKOFF_SECONDS == 60.0

    def test_backoff_is_fixed_for_every_attempt(self):
        """No exponential growth, no jitter."""
        throttle = ThrottleController()
        durations = {throttle.backoff_duration(attempt) for attempt in range(1, 50)}
        assert durations == {60.0}

    def test_unbounded_by_default(self):
        throttle = ThrottleController()
        assert throttle.max_retries is None
        assert throttle.should_retry(RateLimitError(), attempt=10_000)

    def test_ceiling_stops_retries(self):
        """With max_retries=2, the third failure is final."""
        throttle = ThrottleController(max_retries=2)

        assert throttle.should_retry(RateLimitError(), attempt=1)
        assert throttle.should_retry(RateLimitError(), attempt=2)
        assert not throttle.should_retry(RateLimitError(), attempt=3)
        assert throttle.retries_exhausted(3)

    def test_fatal_errors_never_retried(self):
        throttle = ThrottleController()
        assert not throttle.should_retry(ForbiddenError(), attempt=1)

    def test_zero_ceiling_means_no_retries(self):
        throttle = ThrottleController(max_retries=0)
        assert not throttle.should_retry(RateLimitError(), attempt=1)

    def test_negative_values_rejected(self):
        with pytest.raises(ConfigurationError):
            ThrottleController(backoff_seconds=-1)
        with pytest.raises(ConfigurationError):
            ThrottleController(max_retries=-1)


# ============================================
# Environment Configuration Tests
# ============================================

class TestEnvironment:
    """Test configuration read from the environment."""

    def test_reads_ceiling_and_backoff(self, monkeypatch):
        monkeypatch.setenv("MDM_THROTTLE_MAX_RETRIES", "5")
        monkeypatch.setenv("MDM_THROTTLE_BACKOFF_SECONDS", "2.5")

        throttle = ThrottleController()

        assert throttle.max_retries == 5
        assert throttle.backoff_duration(1) == 2.5

    def test_explicit_arguments_win(self, monkeypatch):
        monkeypatch.setenv("MDM_THROTTLE_MAX_RETRIES", "5")

        throttle = ThrottleController(backoff_seconds=0, max_retries=1)

        assert throttle.max_retries == 1
        assert throttle.backoff_seconds == 0

    def test_invalid_value_raises(self, monkeypatch):
        monkeypatch.setenv("MDM_THROTTLE_MAX_RETRIES", "lots")

        with pytest.raises(ConfigurationError) as exc:
            ThrottleController()

        assert "MDM_THROTTLE_MAX_RETRIES" in str(exc.value)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

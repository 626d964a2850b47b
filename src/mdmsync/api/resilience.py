#!/usr/bin/env python3
"""Throttle handling for Microsoft Graph calls.

Graph answers sustained request bursts with HTTP 429, and some Intune
endpoints report throttling as a 4xx/5xx body mentioning "too many requests"
instead. This module decides which failures are worth waiting out and for
how long. It does not sleep or retry by itself; GraphClient does that.

Policy:
    - 429, or an error body/message that matches the throttle pattern,
      is RETRYABLE. Everything else is FATAL.
    - Each retry waits a fixed backoff (60s by default). No exponential
      growth, no jitter, Retry-After is ignored.
    - Retries are unbounded unless a ceiling is configured.

Example:
    throttle = ThrottleController(max_retries=10)

    attempt = 1
    while True:
        try:
            return await do_call()
        except MDMError as e:
            if not throttle.should_retry(e, attempt):
                raise
            await asyncio.sleep(throttle.backoff_duration(attempt))
            attempt += 1
"""
import logging
import os
import re
from enum import Enum
from typing import Optional

from .exceptions import APIError, ConfigurationError, RateLimitError

logger = logging.getLogger(__name__)


DEFAULT_BACKOFF_SECONDS = 60.0

THROTTLE_PATTERN = re.compile(
    r"too\s*many\s*requests|throttl|rate\s*limit|activitylimitreached",
    re.IGNORECASE,
)


class ThrottleVerdict(str, Enum):
    """Outcome of classifying a failed call."""
    RETRYABLE = "RETRYABLE"
    FATAL = "FATAL"


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer, got {value!r}",
            missing_keys=[name],
        )


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a number, got {value!r}",
            missing_keys=[name],
        )


class ThrottleController:
    """Shared backoff policy for paged reads and membership writes.

    Holds configuration only; every decision is a pure function of the error
    and the attempt number the caller passes in.

    Attributes:
        backoff_seconds: Fixed wait applied before each retry
        max_retries: Maximum retries per call (None = retry forever)
    """

    def __init__(
        self,
        backoff_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        """Initialize the controller.

        Args:
            backoff_seconds: Fixed wait before each retry. Defaults to
                MDM_THROTTLE_BACKOFF_SECONDS or 60.
            max_retries: Retry ceiling. Defaults to MDM_THROTTLE_MAX_RETRIES,
                unbounded when neither is set.
        """
        if backoff_seconds is None:
            backoff_seconds = _env_float("MDM_THROTTLE_BACKOFF_SECONDS", DEFAULT_BACKOFF_SECONDS)
        if max_retries is None:
            max_retries = _env_int("MDM_THROTTLE_MAX_RETRIES")

        if backoff_seconds < 0:
            raise ConfigurationError("backoff_seconds must not be negative")
        if max_retries is not None and max_retries < 0:
            raise ConfigurationError("max_retries must not be negative")

        self.backoff_seconds = backoff_seconds
        self.max_retries = max_retries

    def classify(self, error: Exception) -> ThrottleVerdict:
        """Classify a failed call as RETRYABLE (throttled) or FATAL."""
        if isinstance(error, RateLimitError):
            return ThrottleVerdict.RETRYABLE

        if isinstance(error, APIError):
            if error.status_code == 429:
                return ThrottleVerdict.RETRYABLE
            if THROTTLE_PATTERN.search(error.message or ""):
                return ThrottleVerdict.RETRYABLE
            if error.response_body and THROTTLE_PATTERN.search(error.response_body):
                return ThrottleVerdict.RETRYABLE

        return ThrottleVerdict.FATAL

    def backoff_duration(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return self.backoff_seconds

    def retries_exhausted(self, attempt: int) -> bool:
        """Whether the ceiling forbids another try after ``attempt`` failures."""
        return self.max_retries is not None and attempt > self.max_retries

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Whether the call that failed on ``attempt`` should be repeated."""
        if self.classify(error) is not ThrottleVerdict.RETRYABLE:
            return False
        if self.retries_exhausted(attempt):
            logger.warning(
                f"Throttle retry ceiling reached ({self.max_retries} retries)"
            )
            return False
        return True

    def __repr__(self) -> str:
        return (
            f"ThrottleController(backoff_seconds={self.backoff_seconds}, "
            f"max_retries={self.max_retries})"
        )

"""Bounded, category-aware retry policy for generation flows.

A retry is permitted only when the failure is not ``limit`` and fewer than
``max_retries`` retries have been used. Every retry resubmits from scratch
(it never resumes the previous job) and bumps the attempt counter; the
counter resets only on success or when the user abandons the flow. A
``limit`` failure is never retried and routes to the upgrade path instead.

Example usage:
    controller = RetryController(RetryConfig(max_retries=3))

    try:
        await submit_and_poll()
    except Exception as exc:
        decision = controller.evaluate(exc)
        if decision.should_retry:
            controller.record_retry()
            await asyncio.sleep(decision.delay_seconds)
            # resubmit
        elif decision.route_to_upgrade:
            # show paywall
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any

from quippix.core.config import RetryConfig
from quippix.core.errors import ErrorCategory, classify, log_classified, user_message
from quippix.core.logging import get_logger

_logger = get_logger("retry")

_JITTER_FACTOR = 0.25


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of evaluating one classified failure.

    Attributes:
        category: Classified failure category.
        should_retry: Whether the caller may resubmit.
        attempt: Retries already used in this flow.
        max_retries: Retry budget for the flow.
        message: User-facing text (raw message for ``unknown``).
        delay_seconds: Suggested wait before an automatic retry.
    """

    category: ErrorCategory
    should_retry: bool
    attempt: int
    max_retries: int
    message: str
    delay_seconds: float = 0.0

    def __post_init__(self) -> None:
        if self.delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {self.delay_seconds}")

    @property
    def route_to_upgrade(self) -> bool:
        """Limit failures go to the upgrade/backoff path, never to retry."""
        return self.category is ErrorCategory.LIMIT

    @property
    def exhausted(self) -> bool:
        """True when a retriable category ran out of retries."""
        return not self.route_to_upgrade and self.attempt >= self.max_retries

    @property
    def attempt_label(self) -> str:
        """Attempt counter shown beside retryable errors, e.g. "Attempt 2 of 3"."""
        return f"Attempt {self.attempt} of {self.max_retries}"

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category.value,
            "should_retry": self.should_retry,
            "attempt": self.attempt,
            "max_retries": self.max_retries,
            "route_to_upgrade": self.route_to_upgrade,
            "exhausted": self.exhausted,
            "delay_seconds": round(self.delay_seconds, 3),
        }


class RetryController:
    """Tracks retry attempts for one generation flow.

    Args:
        config: Retry budget and backoff settings.
        rng: Random source for jitter; injectable for deterministic tests.
    """

    def __init__(self, config: RetryConfig | None = None, rng: random.Random | None = None) -> None:
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()
        self._attempts = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    def can_retry(self, category: ErrorCategory) -> bool:
        return category is not ErrorCategory.LIMIT and self._attempts < self.max_retries

    def evaluate(self, error: Any) -> RetryDecision:
        """Classify a failure and decide whether the flow may resubmit.

        Does not consume an attempt; call record_retry() when resubmitting.
        """
        category = classify(error)
        should_retry = self.can_retry(category)
        decision = RetryDecision(
            category=category,
            should_retry=should_retry,
            attempt=self._attempts,
            max_retries=self.max_retries,
            message=user_message(category, error),
            delay_seconds=self.delay_for(self._attempts + 1) if should_retry else 0.0,
        )
        log_classified(
            error,
            category,
            should_retry=should_retry,
            attempt=self._attempts,
            max_retries=self.max_retries,
        )
        return decision

    def record_retry(self) -> int:
        """Consume one retry and return the new attempt count."""
        self._attempts += 1
        _logger.info("retry_recorded", attempt=self._attempts, max_retries=self.max_retries)
        return self._attempts

    def reset(self) -> None:
        """Reset after success or when the user abandons the flow."""
        if self._attempts:
            _logger.debug("retry_reset", attempts=self._attempts)
        self._attempts = 0

    def delay_for(self, attempt: int) -> float:
        """Exponential backoff for the given 1-indexed retry, jittered then capped."""
        if attempt < 1 or self.config.base_delay_seconds == 0:
            return 0.0
        delay = self.config.base_delay_seconds * (
            self.config.exponential_base ** (attempt - 1)
        )
        if self.config.jitter:
            delay += delay * _JITTER_FACTOR * self._rng.random()
        return min(delay, self.config.max_delay_seconds)

"""
Retry Policy - Exponential Backoff with Jitter

A small helper composed into every HTTP-backed provider (through
ProviderHttpClient) instead of living in a provider base class.

- Exponential backoff with jitter (prevents thundering herd)
- Retries only errors the policy considers transient
- Never retries block/CAPTCHA detection: retrying a block page only
  deepens the block

Usage:
    from websearch.retry_strategy import RetryPolicy, RetryConfig

    policy = RetryPolicy(RetryConfig(max_retries=2))
    html = await policy.run(lambda: client.get_text(url), label="duckduckgo")
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Optional, Tuple, Type, TypeVar

from .errors import BlockDetectedError, NetworkError, ParseError

logger = logging.getLogger("websearch.retry_strategy")

T = TypeVar("T")


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    # Retries after the first attempt
    max_retries: int = 2

    # Base delay for exponential backoff (seconds)
    base_delay: float = 0.5

    # Maximum delay cap (seconds)
    max_delay: float = 8.0

    # Jitter factor (0.0-1.0, adds randomness to prevent thundering herd)
    jitter_factor: float = 0.25

    # Exponential backoff multiplier
    backoff_multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter_factor=settings.retry_jitter_factor,
        )


# Errors worth another try; everything else propagates immediately
TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (NetworkError,)
NEVER_RETRY: Tuple[Type[BaseException], ...] = (BlockDetectedError, ParseError)


# ============================================
# RETRY ATTEMPT
# ============================================

@dataclass
class RetryAttempt:
    """Represents a single attempt."""
    attempt_number: int
    total_attempts: int
    config: RetryConfig
    label: str

    @property
    def is_last(self) -> bool:
        return self.attempt_number >= self.total_attempts

    @property
    def is_first(self) -> bool:
        return self.attempt_number == 1

    def get_delay(self) -> float:
        """Delay to wait after this attempt fails, with jitter."""
        delay = self.config.base_delay * (
            self.config.backoff_multiplier ** (self.attempt_number - 1)
        )
        delay = min(delay, self.config.max_delay)
        jitter = delay * self.config.jitter_factor * random.random()
        return delay + jitter

    async def wait(self) -> None:
        delay = self.get_delay()
        if delay > 0:
            logger.debug(
                f"Retry {self.attempt_number}/{self.total_attempts} for {self.label}, "
                f"waiting {delay:.2f}s"
            )
            await asyncio.sleep(delay)


# ============================================
# RETRY POLICY
# ============================================

class RetryPolicy:
    """Runs an async operation with bounded retries and backoff."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    ):
        self.config = config or RetryConfig()
        self.retry_on = retry_on

    def attempts(self, label: str = "") -> Iterator[RetryAttempt]:
        total = self.config.max_retries + 1
        for i in range(1, total + 1):
            yield RetryAttempt(
                attempt_number=i,
                total_attempts=total,
                config=self.config,
                label=label,
            )

    def should_retry(self, error: BaseException) -> bool:
        if isinstance(error, NEVER_RETRY):
            return False
        return isinstance(error, self.retry_on)

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "") -> T:
        """
        Execute `operation`, retrying transient failures.

        Raises:
            The last error once attempts are exhausted, or the first
            non-transient error immediately.
        """
        for attempt in self.attempts(label):
            try:
                return await operation()
            except Exception as e:
                if attempt.is_last or not self.should_retry(e):
                    raise
                logger.warning(
                    f"{label}: attempt {attempt.attempt_number}/{attempt.total_attempts} failed: {e}"
                )
                await attempt.wait()
        raise RuntimeError("retry loop exited without result")  # pragma: no cover

"""Bounded retry for image service calls."""

import logging
import time
from dataclasses import dataclass

from .errors import PermanentGenerationError, TransientGenerationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay: float = 3.0  # seconds between attempts

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")


def call_with_retry(func, *args, policy: RetryPolicy | None = None, sleep=time.sleep, **kwargs):
    """
    Call ``func(*args, **kwargs)``, retrying on TransientGenerationError.

    Any other exception propagates on the first attempt.

    Raises:
        PermanentGenerationError: all attempts returned transient errors.
    """
    policy = policy or RetryPolicy()
    last_error = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except TransientGenerationError as e:
            last_error = e
            if attempt < policy.max_attempts:
                logger.warning(
                    "Attempt %d/%d failed: %s; retrying in %ss",
                    attempt,
                    policy.max_attempts,
                    str(e)[:200],
                    policy.delay,
                )
                sleep(policy.delay)

    raise PermanentGenerationError(
        f"Failed after {policy.max_attempts} attempts. Last error: {last_error}"
    ) from last_error

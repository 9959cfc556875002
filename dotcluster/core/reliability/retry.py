"""
Retry: bounded retries with exponential backoff and jitter.

Used for clones, the only network-bound operation. Works on receipts:
a failed receipt is retried, anything else is returned as-is.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass

from dotcluster.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait between tries."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0

    def delay(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        jitter = random.uniform(0, delay * 0.3)
        return delay + jitter


def run_with_retry(
    fn: Callable[[], Receipt],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> Receipt:
    """Call ``fn`` until it stops failing or the attempts run out.

    Returns:
        The last receipt, with ``attempts`` added to its metadata.
    """
    attempt = 0
    while True:
        attempt += 1
        receipt = fn()
        if not receipt.failed or attempt >= policy.max_attempts:
            break
        delay = policy.delay(attempt)
        logger.info(
            "%s %s failed (attempt %d/%d), retrying in %.1fs: %s",
            receipt.operation, receipt.target, attempt, policy.max_attempts,
            delay, receipt.error,
        )
        sleep(delay)

    receipt.metadata["attempts"] = attempt
    return receipt

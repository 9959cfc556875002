"""
Tests for reliability: bounded clone retries with backoff.
"""

from dotcluster.core.models.receipt import Receipt
from dotcluster.core.reliability.retry import RetryPolicy, run_with_retry

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0.0)


class TestRetry:
    """Bounded retries."""

    def test_success_first_try(self):
        receipt = run_with_retry(lambda: Receipt.success("clone", "x"), NO_WAIT)
        assert receipt.ok
        assert receipt.metadata["attempts"] == 1

    def test_retries_until_success(self):
        outcomes = [
            Receipt.failure("clone", "x", error="timeout"),
            Receipt.failure("clone", "x", error="timeout"),
            Receipt.success("clone", "x"),
        ]
        sleeps = []
        receipt = run_with_retry(lambda: outcomes.pop(0), NO_WAIT, sleep=sleeps.append)
        assert receipt.ok
        assert receipt.metadata["attempts"] == 3
        assert len(sleeps) == 2

    def test_gives_up(self):
        calls = []

        def fail():
            calls.append(1)
            return Receipt.failure("clone", "x", error="down")

        receipt = run_with_retry(fail, RetryPolicy(max_attempts=2, base_delay=0.0), sleep=lambda _: None)
        assert receipt.failed
        assert len(calls) == 2

    def test_delay_grows_and_is_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0)
        assert 1.0 <= policy.delay(1) <= 1.3
        assert 2.0 <= policy.delay(2) <= 2.6
        assert 5.0 <= policy.delay(10) <= 6.5

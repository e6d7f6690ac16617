"""Tests for the RetryExecutor class."""

import asyncio
import unittest

from crawlfusion.backoff import BackoffStrategy
from crawlfusion.config import ConfigManager
from crawlfusion.monitor import PerformanceMonitor
from crawlfusion.retry import MAX_STREAK_STEPS, RetryExecutor


class FakeSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class Flaky:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures, exc=ConnectionError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return "ok"


def _executor(max_retries=3, monitor=None):
    sleep = FakeSleep()
    backoff = BackoffStrategy(base_seconds=1.0, max_seconds=100.0, jitter_ratio=0.0)
    return RetryExecutor(max_retries=max_retries, backoff=backoff, sleep=sleep, monitor=monitor), sleep


class TestRetryExecutor(unittest.IsolatedAsyncioTestCase):
    """Verify bounded retries and exponential delays."""

    async def test_success_without_retry(self):
        """A first-try success should not sleep."""
        executor, sleep = _executor()
        result = await executor.execute(Flaky(0), key="ctx:a")
        self.assertEqual(result, "ok")
        self.assertEqual(sleep.calls, [])

    async def test_retries_until_success(self):
        """Two failures then success should sleep twice with doubling delays."""
        executor, sleep = _executor()
        op = Flaky(2)
        result = await executor.execute(op, key="ctx:a")
        self.assertEqual(result, "ok")
        self.assertEqual(op.calls, 3)
        self.assertEqual(sleep.calls, [1.0, 2.0])

    async def test_reraises_after_budget(self):
        """max_retries + 1 failed calls should re-raise the last error."""
        executor, sleep = _executor(max_retries=2)
        op = Flaky(10)
        with self.assertRaises(ConnectionError) as ctx:
            await executor.execute(op, key="ctx:a")
        self.assertEqual(op.calls, 3)
        self.assertIn("failure 3", str(ctx.exception))
        self.assertEqual(len(sleep.calls), 2)

    async def test_zero_retries_calls_once(self):
        """With max_retries=0 the operation runs exactly once."""
        executor, sleep = _executor(max_retries=0)
        op = Flaky(1)
        with self.assertRaises(ConnectionError):
            await executor.execute(op, key="ctx:a")
        self.assertEqual(op.calls, 1)
        self.assertEqual(sleep.calls, [])

    async def test_stops_when_source_becomes_unavailable(self):
        """can_retry returning False re-raises without sleeping."""
        executor, sleep = _executor(max_retries=3)
        op = Flaky(10)
        with self.assertRaises(ConnectionError):
            await executor.execute(op, key="ctx:a", can_retry=lambda: op.calls < 2)
        self.assertEqual(op.calls, 2)
        self.assertEqual(sleep.calls, [1.0])

    async def test_cancellation_is_not_retried(self):
        """CancelledError should propagate immediately."""
        executor, sleep = _executor()
        op = Flaky(5, exc=asyncio.CancelledError)
        with self.assertRaises(asyncio.CancelledError):
            await executor.execute(op, key="ctx:a")
        self.assertEqual(op.calls, 1)


class TestRetryBookkeeping(unittest.IsolatedAsyncioTestCase):
    """Verify per-key statistics and streak-based delays."""

    async def test_key_stats(self):
        """Attempts, failures and the last error are tracked per key."""
        executor, _ = _executor()
        await executor.execute(Flaky(1), key="ctx:a")
        stats = executor.key_stats("ctx:a")
        self.assertEqual(stats.attempts, 2)
        self.assertEqual(stats.failures, 1)
        self.assertEqual(stats.successes, 1)
        self.assertEqual(stats.consecutive_failures, 0)
        self.assertEqual(stats.last_error, "ConnectionError: failure 1")
        self.assertEqual(executor.key_stats("other").attempts, 0)

    async def test_failing_key_backs_off_longer(self):
        """A key with a failure streak starts further along the curve."""
        executor, sleep = _executor(max_retries=1)
        with self.assertRaises(ConnectionError):
            await executor.execute(Flaky(10), key="ctx:a")
        self.assertEqual(sleep.calls, [1.0])
        sleep.calls.clear()
        with self.assertRaises(ConnectionError):
            await executor.execute(Flaky(10), key="ctx:a")
        # streak of 2 from the previous call: 1.0 * 2^2
        self.assertEqual(sleep.calls, [4.0])

    async def test_streak_is_capped(self):
        """The streak never pushes the delay more than MAX_STREAK_STEPS further."""
        executor, sleep = _executor(max_retries=0)
        for _ in range(MAX_STREAK_STEPS + 3):
            with self.assertRaises(ConnectionError):
                await executor.execute(Flaky(10), key="ctx:a")
        executor._max_retries = 1
        with self.assertRaises(ConnectionError):
            await executor.execute(Flaky(10), key="ctx:a")
        self.assertEqual(sleep.calls, [2.0 ** MAX_STREAK_STEPS])

    async def test_reset(self):
        """reset() clears one key or all of them."""
        executor, _ = _executor(max_retries=0)
        for key in ("a", "b"):
            with self.assertRaises(ConnectionError):
                await executor.execute(Flaky(1), key=key)
        executor.reset("a")
        self.assertEqual(executor.key_stats("a").attempts, 0)
        self.assertEqual(executor.key_stats("b").attempts, 1)
        executor.reset()
        self.assertEqual(executor.key_stats("b").attempts, 0)

    async def test_reports_retried_attempts_to_monitor(self):
        """Only attempts after the first are counted as retries."""
        monitor = PerformanceMonitor(ConfigManager())
        executor, _ = _executor(monitor=monitor)
        await executor.execute(Flaky(2), key="ctx:a")
        retry = monitor.get_stats().retry
        self.assertEqual(retry.total_attempts, 2)
        self.assertEqual(retry.total_successes, 1)


if __name__ == "__main__":
    unittest.main()

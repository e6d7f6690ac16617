"""Tests for the batch-size policy classes."""

import unittest

from crawlfusion.config import CrawlConfig
from crawlfusion.policies import BatchState, GrowBatchPolicy, ShrinkBatchPolicy, default_policies


def _make_state(**overrides) -> BatchState:
    """Helper to build a BatchState with sensible defaults."""
    defaults = dict(batch_size=10, batch_success_rate=100.0, batch_succeeded=True, consecutive_failures=0)
    defaults.update(overrides)
    return BatchState(**defaults)


class TestShrinkBatchPolicy(unittest.TestCase):
    """Verify ShrinkBatchPolicy activates after repeated failures and halves the size."""

    def test_should_apply_at_threshold(self):
        """Activates once consecutive failures reach the maximum."""
        policy = ShrinkBatchPolicy(max_consecutive_failures=3)
        self.assertFalse(policy.should_apply(_make_state(batch_succeeded=False, consecutive_failures=2)))
        self.assertTrue(policy.should_apply(_make_state(batch_succeeded=False, consecutive_failures=3)))

    def test_should_not_apply_on_success(self):
        """A successful batch never shrinks."""
        policy = ShrinkBatchPolicy(max_consecutive_failures=1)
        self.assertFalse(policy.should_apply(_make_state(consecutive_failures=5)))

    def test_apply_halves(self):
        """Applying halves the batch size."""
        self.assertEqual(ShrinkBatchPolicy().apply(_make_state(batch_size=9)), 4)

    def test_does_not_go_below_minimum(self):
        """Size should not drop below min_size."""
        self.assertEqual(ShrinkBatchPolicy(min_size=3).apply(_make_state(batch_size=4)), 3)
        self.assertEqual(ShrinkBatchPolicy(min_size=0).apply(_make_state(batch_size=1)), 1)


class TestGrowBatchPolicy(unittest.TestCase):
    """Verify GrowBatchPolicy activates on batches meeting the target."""

    def test_should_apply_at_target(self):
        """Activates when the batch success rate reaches the target."""
        policy = GrowBatchPolicy(target_rate=95)
        self.assertTrue(policy.should_apply(_make_state(batch_success_rate=95.0)))
        self.assertFalse(policy.should_apply(_make_state(batch_success_rate=90.0)))

    def test_apply_grows_by_one(self):
        """Applying increases the size by one."""
        self.assertEqual(GrowBatchPolicy().apply(_make_state(batch_size=10)), 11)

    def test_respects_maximum(self):
        """Size should not exceed max_size."""
        self.assertEqual(GrowBatchPolicy(max_size=10).apply(_make_state(batch_size=10)), 10)


class TestDefaultPolicies(unittest.TestCase):
    """Verify policies built from configuration."""

    def test_order_and_thresholds(self):
        """Shrink is evaluated before grow, with configured bounds."""
        config = CrawlConfig()
        config.batch.min_size = 2
        config.batch.max_size = 12
        shrink, grow = default_policies(config)
        self.assertIsInstance(shrink, ShrinkBatchPolicy)
        self.assertIsInstance(grow, GrowBatchPolicy)
        self.assertEqual(shrink.apply(_make_state(batch_size=3)), 2)
        self.assertEqual(grow.apply(_make_state(batch_size=12)), 12)


if __name__ == "__main__":
    unittest.main()

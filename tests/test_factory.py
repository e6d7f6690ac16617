"""Tests for the StrategyFactory class."""

import unittest

from crawlfusion.adapters import JsonApiStrategy
from crawlfusion.factory import StrategyFactory


class TestStrategyFactory(unittest.TestCase):
    """Verify that the factory creates and caches adapters."""

    def setUp(self):
        """Set up shared factory instance."""
        self.factory = StrategyFactory()

    def test_creates_json_api_strategy(self):
        """The default type builds a JsonApiStrategy."""
        strategy = self.factory.create({"name": "places", "url": "https://example.com", "priority": 2})
        self.assertIsInstance(strategy, JsonApiStrategy)
        self.assertEqual(strategy.name, "places")
        self.assertEqual(strategy.priority, 2)

    def test_caches_by_name(self):
        """Creating the same name twice returns the cached instance."""
        first = self.factory.create({"name": "a", "url": "https://example.com"})
        second = self.factory.create({"name": "a", "url": "https://other.com"})
        self.assertIs(first, second)

    def test_default_priority_follows_creation_order(self):
        """Without a priority, adapters are ordered as declared."""
        strategies = self.factory.create_all(
            [{"name": "a", "url": "https://a"}, {"name": "b", "url": "https://b"}]
        )
        self.assertEqual([s.priority for s in strategies], [0, 1])

    def test_unknown_type_raises_error(self):
        """An unrecognized type should raise ValueError."""
        with self.assertRaises(ValueError) as ctx:
            self.factory.create({"name": "x", "type": "unknown", "url": "https://example.com"})
        self.assertIn("unknown", str(ctx.exception))

    def test_missing_fields_raise_error(self):
        """An endpoint without name or url is rejected."""
        with self.assertRaises(ValueError):
            self.factory.create({"url": "https://example.com"})
        with self.assertRaises(ValueError):
            self.factory.create({"name": "no-url"})


if __name__ == "__main__":
    unittest.main()

"""Unit tests for ttl_cache.py and cached_queries.py.

Run with: python3 -m pytest tests/test_ttl_cache.py -v
"""

from unittest.mock import MagicMock, patch

from dt_mergebot import cached_queries
from dt_mergebot.ttl_cache import FOREVER, TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTTLCache:
    """Tests for TTLCache.get."""

    def test_produces_once_within_lifetime(self):
        clock = FakeClock()
        cache = TTLCache(clock)
        produce = MagicMock(return_value="value")
        assert cache.get("k", 10, produce) == "value"
        clock.now += 5
        assert cache.get("k", 10, produce) == "value"
        produce.assert_called_once()

    def test_reproduces_after_expiry(self):
        clock = FakeClock()
        cache = TTLCache(clock)
        produce = MagicMock(side_effect=["first", "second"])
        assert cache.get("k", 10, produce) == "first"
        clock.now += 11
        assert cache.get("k", 10, produce) == "second"

    def test_forever_never_expires(self):
        clock = FakeClock()
        cache = TTLCache(clock)
        produce = MagicMock(return_value=1)
        cache.get("k", FOREVER, produce)
        clock.now += 10 ** 9
        cache.get("k", FOREVER, produce)
        produce.assert_called_once()

    def test_keys_are_independent(self):
        cache = TTLCache(FakeClock())
        assert cache.get("a", 10, lambda: 1) == 1
        assert cache.get("b", 10, lambda: 2) == 2

    def test_clear(self):
        cache = TTLCache(FakeClock())
        produce = MagicMock(return_value=1)
        cache.get("k", FOREVER, produce)
        cache.clear()
        cache.get("k", FOREVER, produce)
        assert produce.call_count == 2


class TestCachedQueries:
    """Tests for label and column id lookups."""

    @patch("dt_mergebot.cached_queries.graphql_client.query_labels")
    def test_label_id_queries_once(self, mock_query):
        mock_query.return_value = [{"id": "L1", "name": "Self Merge"}, {"id": "L2", "name": "Popular package"}]
        assert cached_queries.label_id("Popular package") == "L2"
        assert cached_queries.label_id("Self Merge") == "L1"
        assert cached_queries.label_id("Nope") is None
        mock_query.assert_called_once()

    @patch("dt_mergebot.cached_queries.graphql_client.query_project_columns")
    def test_column_id(self, mock_query):
        mock_query.return_value = [{"id": "C1", "name": "Other"}]
        assert cached_queries.column_id("Other", project_number=5) == "C1"
        mock_query.assert_called_once_with("DefinitelyTyped", "DefinitelyTyped", 5)

"""
Tests for the edge-growing range cache.
"""

import pytest

from stream_explorer.models import VisibleWindow
from stream_explorer.range_cache import RangeCache
from stream_explorer.timekeys import Granularity


def _ids(cache):
    return [record_id for record_id, _ in cache.snapshot()]


def _fill(cache, *seconds):
    for s in seconds:
        cache.insert(f"2024-05-01T11:30:{s:02d}", {"h1": {"x": s}})


@pytest.fixture
def cache(context):
    return RangeCache(context)


class TestInsert:
    def test_seed_then_grow_at_both_edges(self, cache):
        assert cache.insert("2024-05-01T11:30:05", {"h1": {"x": 5}})
        assert cache.insert("2024-05-01T11:30:01", {"h1": {"x": 1}})
        assert cache.insert("2024-05-01T11:30:09", {"h1": {"x": 9}})

        assert _ids(cache) == [
            "2024-05-01T11:30:01",
            "2024-05-01T11:30:05",
            "2024-05-01T11:30:09",
        ]
        assert cache.earliest == "2024-05-01T11:30:01"
        assert cache.latest == "2024-05-01T11:30:09"
        assert len(cache) == 3

    def test_interior_and_duplicate_ids_are_dropped(self, cache):
        _fill(cache, 1, 5)
        assert cache.insert("2024-05-01T11:30:03", {"h1": {"x": 3}}) is False
        assert cache.insert("2024-05-01T11:30:05", {"h1": {"x": 99}}) is False
        assert cache.insert("2024-05-01T11:30:01", {"h1": {"x": 99}}) is False

        assert _ids(cache) == ["2024-05-01T11:30:01", "2024-05-01T11:30:05"]
        assert cache.snapshot()[1][1] == {"h1": {"x": 5}}

    def test_single_record_duplicate_is_dropped(self, cache):
        _fill(cache, 1)
        assert cache.insert("2024-05-01T11:30:01", {"h1": {"x": 2}}) is False
        assert len(cache) == 1

    def test_coarse_granularity_is_never_cached(self, context, cache):
        context.granularity = Granularity.MINUTE
        assert cache.insert("2024-05-01T11:30", {"h1": {"x": 1}}) is False
        assert cache.is_empty

    def test_insert_after_key_change_starts_over(self, context, cache):
        _fill(cache, 1, 2)
        context.series_id = "api"
        cache.insert("2024-05-01T11:00:00", {"h1": {"x": 0}})
        assert _ids(cache) == ["2024-05-01T11:00:00"]


class TestMissingRange:
    def test_coarse_granularity_always_fetches_everything(self, context, cache):
        context.granularity = Granularity.HOUR
        desired = VisibleWindow("2024-05-01T01", "2024-05-01T12")
        assert cache.missing_range(desired) == desired
        assert cache.missing_range(desired) == desired

    def test_empty_cache_fetches_everything(self, cache):
        desired = VisibleWindow("2024-05-01T11:30:00", "2024-05-01T12:00:00")
        assert cache.missing_range(desired) == desired

    def test_gap_after_latest_is_requested(self, cache):
        _fill(cache, 0, 1, 2, 3)
        desired = VisibleWindow("2024-05-01T11:30:00", "2024-05-01T12:00:00")
        assert cache.missing_range(desired) == VisibleWindow("2024-05-01T11:30:03", "2024-05-01T12:00:00")
        assert len(cache) == 4

    def test_covered_range_needs_no_fetch(self, cache):
        _fill(cache, 0, 10, 20)
        assert cache.missing_range(VisibleWindow("2024-05-01T11:30:05", "2024-05-01T11:30:20")) is None
        assert len(cache) == 3

    def test_start_slightly_before_earliest_counts_as_covered(self, cache):
        _fill(cache, 5, 6)
        desired = VisibleWindow("2024-05-01T11:30:00", "2024-05-01T11:30:40")
        assert cache.missing_range(desired) == VisibleWindow("2024-05-01T11:30:06", "2024-05-01T11:30:40")

    def test_earlier_start_invalidates_cache(self, cache):
        _fill(cache, 30, 31)
        desired = VisibleWindow("2024-05-01T11:00:00", "2024-05-01T11:30:31")
        assert cache.missing_range(desired) == desired
        assert cache.is_empty

    def test_key_change_invalidates_cache(self, context, cache):
        _fill(cache, 0, 1)
        context.topic = "haproxy"
        desired = VisibleWindow("2024-05-01T11:30:00", "2024-05-01T11:30:01")
        assert cache.missing_range(desired) == desired
        assert cache.is_empty

    def test_reset_clears_everything(self, cache):
        _fill(cache, 0, 1)
        cache.reset()
        assert cache.snapshot() == []
        assert cache.earliest is None and cache.latest is None

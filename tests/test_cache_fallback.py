"""Tests for the LRU cache and the cold-start popularity fallback."""

import pytest

from recsys.cf.cache import LRUCache
from recsys.cf.types import Algorithm
from service.recommender import PopularityFallback


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


# ============================================================================
# LRUCache
# ============================================================================

class TestLRUCache:

    def test_evicts_least_recently_used(self):
        cache = LRUCache(max_size=2)
        cache.put('a', 1)
        cache.put('b', 2)
        cache.get('a')
        cache.put('c', 3)

        assert cache.keys() == ['a', 'c']
        assert cache.stats()['evictions'] == 1

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = LRUCache(max_size=10, ttl_seconds=60, clock=clock)
        cache.put('wine', [1, 2])

        clock.now += 59
        assert cache.get('wine') == [1, 2]

        clock.now += 2
        assert cache.get('wine') is None
        assert 'wine' not in cache

    def test_invalidate_by_predicate(self):
        cache = LRUCache()
        cache.put(('user_based_cf', '1.0.0'), 'a')
        cache.put(('user_based_cf', '1.0.1'), 'b')
        cache.put(('item_based_cf', '1.0.0'), 'c')

        removed = cache.invalidate(lambda key: key[0] == 'user_based_cf')

        assert removed == 2
        assert cache.keys() == [('item_based_cf', '1.0.0')]

    def test_hit_rate(self):
        cache = LRUCache(name='pairings')
        cache.put('k', 'v')
        cache.get('k')
        cache.get('missing')

        stats = cache.stats()

        assert stats['name'] == 'pairings'
        assert stats['hits'] == 1 and stats['misses'] == 1
        assert stats['hit_rate'] == pytest.approx(0.5)

    def test_delete_and_clear(self):
        cache = LRUCache()
        cache.put('x', 1)
        cache.put('y', 2)

        assert cache.delete('x') is True
        assert cache.delete('x') is False
        cache.clear()
        assert cache.size() == 0

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            LRUCache(max_size=0)


# ============================================================================
# PopularityFallback
# ============================================================================

class TestPopularityFallback:

    def test_ranked_by_weighted_average(self, cellar_store):
        recs = PopularityFallback(cellar_store).recommend(limit=4)

        assert [r.wine_id for r in recs] == [3, 5, 2, 1]
        assert recs[0].predicted_rating == pytest.approx(14 / 3)
        assert recs[0].support == 3
        assert all(r.algorithm == Algorithm.POPULARITY_FALLBACK for r in recs)

    def test_excluded_wines_skipped(self, cellar_store):
        recs = PopularityFallback(cellar_store).recommend(limit=3, exclude_ids={3})
        assert [r.wine_id for r in recs] == [5, 2, 1]

    def test_confidence_below_cf_range(self, cellar_store):
        fallback = PopularityFallback(cellar_store, max_confidence=0.5)

        assert fallback.confidence(0) == 0.0
        assert fallback.confidence(2) == pytest.approx(0.25)
        assert fallback.confidence(10_000) < 0.5

    def test_zero_limit(self, cellar_store):
        assert PopularityFallback(cellar_store).recommend(limit=0) == []

    @pytest.mark.parametrize('max_confidence', [-0.1, 0.8, 1.0])
    def test_rejects_confidence_cap(self, cellar_store, max_confidence):
        with pytest.raises(ValueError):
            PopularityFallback(cellar_store, max_confidence=max_confidence)

    def test_snapshot_cached_until_cleared(self, cellar_store, monkeypatch):
        fallback = PopularityFallback(cellar_store)
        calls = []
        original = cellar_store.top_rated_wines

        def counting(limit=10):
            calls.append(limit)
            return original(limit=limit)

        monkeypatch.setattr(cellar_store, 'top_rated_wines', counting)

        fallback.recommend(limit=3)
        fallback.recommend(limit=3)
        assert len(calls) == 1

        fallback.clear_cache()
        fallback.recommend(limit=3)
        assert len(calls) == 2

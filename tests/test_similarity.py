"""Tests for user-user Pearson and item-item cosine similarity."""

import pytest

from recsys.cf.errors import RatingStoreError
from recsys.cf.rating_store import DataFrameRatingStore
from recsys.cf.similarity import SimilarityEngine
from recsys.cf.types import Rating

from tests.fakes import FailingStore


def _ratings(user_id, mapping):
    return [Rating(user_id=user_id, wine_id=w, rating=r) for w, r in mapping.items()]


# ============================================================================
# User similarity
# ============================================================================

class TestUserSimilarity:

    def test_agreeing_likers_correlate_positively(self, two_diner_store):
        engine = SimilarityEngine(two_diner_store)
        u = _ratings('U', {1: 5, 2: 4})
        v = _ratings('V', {1: 4, 2: 5, 3: 4})

        assert engine.calculate_user_similarity(u, v) == pytest.approx(0.8)

    def test_mean_centering_is_classic_pearson(self, two_diner_store):
        engine = SimilarityEngine(two_diner_store, centering='mean')
        u = _ratings('U', {1: 5, 2: 4})
        v = _ratings('V', {1: 4, 2: 5})

        assert engine.calculate_user_similarity(u, v) == pytest.approx(-1.0)

    def test_no_overlap_is_exactly_zero(self, two_diner_store):
        engine = SimilarityEngine(two_diner_store)
        u = _ratings('U', {1: 5, 2: 4})
        w = _ratings('W', {7: 5, 8: 1})

        assert engine.calculate_user_similarity(u, w) == 0.0

    def test_constant_vector_is_zero(self, two_diner_store):
        engine = SimilarityEngine(two_diner_store)
        flat = _ratings('U', {1: 4, 2: 4, 3: 4})
        varied = _ratings('V', {1: 5, 2: 2, 3: 1})

        assert engine.calculate_user_similarity(flat, varied) == 0.0
        assert engine.calculate_user_similarity(varied, flat) == 0.0

    def test_symmetric_and_bounded(self, two_diner_store):
        engine = SimilarityEngine(two_diner_store)
        a = _ratings('a', {1: 5, 2: 1, 3: 4, 4: 2})
        b = _ratings('b', {1: 4, 2: 2, 3: 5, 4: 1})

        ab = engine.calculate_user_similarity(a, b)
        assert ab == pytest.approx(engine.calculate_user_similarity(b, a))
        assert -1.0 <= ab <= 1.0

    def test_accepts_mappings(self, two_diner_store):
        engine = SimilarityEngine(two_diner_store)
        u = [{'wine_id': 1, 'rating': 5}, {'wine_id': 2, 'rating': 4}]
        v = [{'wine_id': 2, 'rating': 5}, {'wine_id': 1, 'rating': 4}]

        assert engine.calculate_user_similarity(u, v) == pytest.approx(0.8)

    def test_rejects_unknown_centering(self, two_diner_store):
        with pytest.raises(ValueError):
            SimilarityEngine(two_diner_store, centering='median')


class TestFindSimilarUsers:

    def test_skips_target(self, two_diner_store):
        engine = SimilarityEngine(two_diner_store)
        target = two_diner_store.ratings_for_user('U')

        result = engine.find_similar_users('U', target, ['U', 'V'])

        assert [r['user_id'] for r in result] == ['V']
        assert result[0]['similarity'] == pytest.approx(0.8)

    def test_ties_keep_pool_order(self):
        store = DataFrameRatingStore.from_records([
            {'user_id': 'T', 'wine_id': 1, 'rating': 5},
            {'user_id': 'T', 'wine_id': 2, 'rating': 4},
            {'user_id': 'X', 'wine_id': 1, 'rating': 5},
            {'user_id': 'X', 'wine_id': 2, 'rating': 4},
            {'user_id': 'Y', 'wine_id': 1, 'rating': 5},
            {'user_id': 'Y', 'wine_id': 2, 'rating': 4},
            {'user_id': 'Z', 'wine_id': 1, 'rating': 1},
            {'user_id': 'Z', 'wine_id': 2, 'rating': 2},
        ])
        engine = SimilarityEngine(store)
        target = store.ratings_for_user('T')

        result = engine.find_similar_users('T', target, ['Z', 'Y', 'X'])

        assert [r['user_id'] for r in result] == ['Y', 'X', 'Z']
        # Restartable: a second call gives the same list
        assert engine.find_similar_users('T', target, ['Z', 'Y', 'X']) == result

    def test_store_failure_propagates(self):
        engine = SimilarityEngine(FailingStore())

        with pytest.raises(RatingStoreError):
            engine.find_similar_users('U', _ratings('U', {1: 5}), ['V'])


# ============================================================================
# Item similarity
# ============================================================================

class TestItemSimilarity:

    def test_cosine_over_shared_raters(self, two_diner_store):
        engine = SimilarityEngine(two_diner_store)
        a = [{'user_id': 'x', 'rating': 3}, {'user_id': 'y', 'rating': 4}, {'user_id': 'z', 'rating': 5}]
        b = [{'user_id': 'x', 'rating': 4}, {'user_id': 'y', 'rating': 3}]

        assert engine.calculate_item_similarity(a, b) == pytest.approx(24 / 25)

    def test_no_shared_raters_is_zero(self, two_diner_store):
        engine = SimilarityEngine(two_diner_store)
        a = [{'user_id': 'x', 'rating': 3}]
        b = [{'user_id': 'y', 'rating': 3}]

        assert engine.calculate_item_similarity(a, b) == 0.0
        assert engine.calculate_item_similarity([], b) == 0.0

    def test_find_similar_items_ordering(self, two_diner_store):
        engine = SimilarityEngine(two_diner_store)

        result = engine.find_similar_items(1, limit=10)

        assert [r['wine_id'] for r in result] == [3, 2]
        assert result[0]['similarity'] == pytest.approx(1.0)
        assert result[1]['similarity'] == pytest.approx(40 / 41)

    def test_find_similar_items_truncates_and_excludes_self(self, cellar_store):
        engine = SimilarityEngine(cellar_store)

        result = engine.find_similar_items(1, limit=3)

        assert len(result) == 3
        assert all(r['wine_id'] != 1 for r in result)
        assert all(r['similarity'] > 0 for r in result)
        sims = [r['similarity'] for r in result]
        assert sims == sorted(sims, reverse=True)

    def test_unrated_wine_has_no_neighbours(self, cellar_store):
        engine = SimilarityEngine(cellar_store)
        assert engine.find_similar_items(999, limit=5) == []

    def test_neighbourhoods_are_cached(self, cellar_store):
        engine = SimilarityEngine(cellar_store)

        first = engine.find_similar_items(2, limit=5)
        second = engine.find_similar_items(2, limit=5)

        assert first == second
        assert engine.get_cache_stats()['hits'] == 1

        engine.clear_cache()
        assert engine.get_cache_stats()['size'] == 0

    def test_precompute_warms_cache(self, cellar_store):
        engine = SimilarityEngine(cellar_store)

        assert engine.precompute_item_similarities([1, 2, 3]) == 3
        engine.find_similar_items(3, limit=5)

        stats = engine.get_cache_stats()
        assert stats['size'] == 3
        assert stats['hits'] == 1

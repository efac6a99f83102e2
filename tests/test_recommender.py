"""Tests for RecommendationEngine: CF paths, hybrid blending, cold start, failures."""

import pytest

from recsys.cf.errors import ModelNotFoundError, RatingStoreError
from recsys.cf.types import Algorithm, Recommendation
from service.recommender import RecommendationEngine, RecommenderConfig

from tests.fakes import WINE_C, FailingStore


ALL_ALGORITHMS = [
    Algorithm.USER_BASED,
    Algorithm.ITEM_BASED,
    Algorithm.HYBRID,
    Algorithm.POPULARITY_FALLBACK,
]


# ============================================================================
# User-based
# ============================================================================

class TestUserBased:

    @pytest.mark.asyncio
    async def test_end_to_end_two_diners(self, two_diner_store, make_engine):
        engine = make_engine(two_diner_store)

        recs = await engine.get_user_based_recommendations('U')

        assert [r.wine_id for r in recs] == [WINE_C]
        rec = recs[0]
        assert rec.algorithm == Algorithm.USER_BASED
        assert rec.predicted_rating == pytest.approx(4.0)
        assert rec.support == 1
        # One neighbour at similarity 0.8: 0.8 * 1 / (1 + 2)
        assert rec.confidence == pytest.approx(0.8 / 3)
        assert rec.model_version == 'baseline'

    @pytest.mark.asyncio
    async def test_sorted_and_truncated(self, cellar_store, make_engine):
        engine = make_engine(cellar_store)

        recs = await engine.get_user_based_recommendations('alice', limit=2)

        assert len(recs) <= 2
        ratings = [r.predicted_rating for r in recs]
        assert ratings == sorted(ratings, reverse=True)

    @pytest.mark.asyncio
    async def test_parameter_model_overrides_config(self, two_diner_store, make_engine, manager):
        await manager.save_model({
            'name': 'user_based_cf',
            'type': 'collaborative_filtering',
            'weights': {},
            'metadata': {'hyperparameters': {'min_similarity': 0.9}},
        })
        engine = make_engine(two_diner_store)

        assert await engine.get_user_based_recommendations('U') == []

    @pytest.mark.asyncio
    async def test_persisted_model_version_reported(self, two_diner_store, make_engine, manager):
        await manager.save_model({'name': 'user_based_cf', 'type': 'collaborative_filtering', 'weights': {}})
        engine = make_engine(two_diner_store)

        recs = await engine.get_user_based_recommendations('U')

        assert recs[0].model_version == '1.0.0'

    @pytest.mark.asyncio
    async def test_low_neighbour_ratings_ignored(self, two_diner_store, make_engine):
        engine = make_engine(two_diner_store, min_rating=4.5)
        assert await engine.get_user_based_recommendations('U') == []


# ============================================================================
# Item-based & hybrid
# ============================================================================

class TestItemBasedAndHybrid:

    @pytest.mark.asyncio
    async def test_item_based_two_diners(self, two_diner_store, make_engine):
        engine = make_engine(two_diner_store)

        recs = await engine.get_item_based_recommendations('U')

        assert [r.wine_id for r in recs] == [WINE_C]
        # Seeds A (5) and B (4) both reach C at similarity 1.0
        assert recs[0].predicted_rating == pytest.approx(4.5)
        assert recs[0].confidence == pytest.approx(0.5)
        assert recs[0].algorithm == Algorithm.ITEM_BASED

    @pytest.mark.asyncio
    async def test_hybrid_blends_both_sources(self, two_diner_store, make_engine):
        engine = make_engine(two_diner_store)

        recs = await engine.get_hybrid_recommendations('U')

        assert len(recs) == 1
        rec = recs[0]
        c1, c2 = 0.8 / 3, 0.5
        assert rec.algorithm == Algorithm.HYBRID
        assert rec.predicted_rating == pytest.approx((4.0 * c1 + 4.5 * c2) / (c1 + c2))
        assert rec.confidence == pytest.approx((c1 ** 2 + c2 ** 2) / (c1 + c2))

    def test_blend_weighting(self):
        user = [
            Recommendation(10, 4.0, 0.9, Algorithm.USER_BASED),
            Recommendation(11, 3.5, 0.4, Algorithm.USER_BASED),
        ]
        item = [
            Recommendation(10, 3.0, 0.6, Algorithm.ITEM_BASED),
            Recommendation(12, 4.8, 0.3, Algorithm.ITEM_BASED),
        ]

        blended = {r.wine_id: r for r in RecommendationEngine.blend_recommendations(user, item)}

        assert blended[10].predicted_rating == pytest.approx((4.0 * 0.9 + 3.0 * 0.6) / 1.5)
        assert blended[10].confidence == pytest.approx((0.81 + 0.36) / 1.5)
        assert blended[11].predicted_rating == 3.5 and blended[11].confidence == 0.4
        assert blended[12].predicted_rating == 4.8 and blended[12].confidence == 0.3
        assert all(r.algorithm == Algorithm.HYBRID for r in blended.values())

    @pytest.mark.asyncio
    @pytest.mark.parametrize('algorithm', ALL_ALGORITHMS)
    async def test_never_recommends_rated_wines(self, cellar_store, cellar_frame, make_engine, algorithm):
        engine = make_engine(cellar_store)

        for user_id in cellar_frame['user_id'].unique():
            rated = {r.wine_id for r in cellar_store.ratings_for_user(user_id)}
            recs = await engine.get_recommendations(user_id, algorithm, limit=20)
            assert not rated & {r.wine_id for r in recs}, (user_id, algorithm)


# ============================================================================
# Cold start
# ============================================================================

class TestColdStart:

    @pytest.mark.asyncio
    @pytest.mark.parametrize('algorithm', [Algorithm.USER_BASED, Algorithm.ITEM_BASED, Algorithm.HYBRID])
    async def test_unknown_user_gets_popularity(self, cellar_store, make_engine, algorithm):
        engine = make_engine(cellar_store)

        recs = await engine.get_recommendations('new-diner', algorithm, limit=3)

        assert [r.wine_id for r in recs] == [3, 5, 2]
        assert all(r.algorithm == Algorithm.POPULARITY_FALLBACK for r in recs)
        assert all(r.confidence < 0.8 for r in recs)

    @pytest.mark.asyncio
    async def test_threshold_routes_thin_history(self, cellar_store, make_engine):
        engine = make_engine(cellar_store, cold_start_threshold=3)

        recs = await engine.get_user_based_recommendations('frank', limit=5)

        assert recs
        assert all(r.algorithm == Algorithm.POPULARITY_FALLBACK for r in recs)
        assert {5, 8}.isdisjoint(r.wine_id for r in recs)

    @pytest.mark.asyncio
    async def test_cold_start_needs_no_model(self, cellar_store, make_engine):
        engine = make_engine(cellar_store, use_baseline_model=False)

        recs = await engine.get_hybrid_recommendations('new-diner')

        assert recs

    def test_confidence_cap_validated(self):
        with pytest.raises(ValueError):
            RecommenderConfig(cold_start_max_confidence=0.8)


# ============================================================================
# Failures & dispatch
# ============================================================================

class TestFailures:

    @pytest.mark.asyncio
    async def test_no_model_and_no_baseline_fails_loudly(self, two_diner_store, make_engine):
        engine = make_engine(two_diner_store, use_baseline_model=False)

        with pytest.raises(ModelNotFoundError):
            await engine.get_user_based_recommendations('U')

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, manager):
        engine = RecommendationEngine(FailingStore(), model_manager=manager, config=RecommenderConfig())

        with pytest.raises(RatingStoreError):
            await engine.get_hybrid_recommendations('U')

    @pytest.mark.asyncio
    async def test_dispatch_accepts_string_tags(self, two_diner_store, make_engine):
        engine = make_engine(two_diner_store)

        recs = await engine.get_recommendations('U', 'item_based_cf')

        assert recs[0].algorithm == Algorithm.ITEM_BASED

    @pytest.mark.asyncio
    async def test_dispatch_rejects_unknown_tag(self, two_diner_store, make_engine):
        engine = make_engine(two_diner_store)

        with pytest.raises(ValueError):
            await engine.get_recommendations('U', 'matrix_factorization')

    @pytest.mark.asyncio
    async def test_dish_context_passes_through(self, two_diner_store, make_engine):
        engine = make_engine(two_diner_store)

        with_context = await engine.get_user_based_recommendations('U', dish_context={'dish': 'lamb'})
        without = await engine.get_user_based_recommendations('U')

        assert with_context == without


class TestPredictRating:

    @pytest.mark.asyncio
    async def test_neighbourhood_prediction(self, two_diner_store, make_engine):
        engine = make_engine(two_diner_store)
        assert await engine.predict_rating('U', WINE_C) == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_own_rating_returned(self, two_diner_store, make_engine):
        engine = make_engine(two_diner_store)
        assert await engine.predict_rating('U', 1) == 5.0

    @pytest.mark.asyncio
    async def test_falls_back_to_average_then_midpoint(self, cellar_store, make_engine):
        engine = make_engine(cellar_store)

        assert await engine.predict_rating('new-diner', 8) == pytest.approx(4.0)
        assert await engine.predict_rating('new-diner', 999) == 3.0

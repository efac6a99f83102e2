"""
Collaborative-Filtering Recommendation Engine for the Serving Layer.

This module provides the RecommendationEngine which turns a diner's rating
history into scored wine suggestions:

- user_based_cf: similarity-weighted ratings of the diner's nearest neighbours
- item_based_cf: wines similar to the diner's favourites
- hybrid: confidence-weighted blend of both
- popularity_fallback: best-rated wines for diners without history

Serving parameters (neighbourhood size, thresholds, ...) come from the
RecommenderConfig, overridden by the hyperparameters of the parameter model
artifact resolved through the ModelManager for each request.

Example:
    >>> from service.recommender import RecommendationEngine
    >>> engine = RecommendationEngine(store, model_manager)
    >>> recs = await engine.get_hybrid_recommendations('diner-17', limit=5)
"""

from typing import Dict, List, Optional, Any, Tuple, Callable, Awaitable
from dataclasses import dataclass, fields, replace, asdict
import asyncio
import logging
import os
import time

import numpy as np
import yaml

from recsys.cf.logging_utils import format_params, format_metrics
from recsys.cf.rating_store import RatingStore
from recsys.cf.registry import ModelManager
from recsys.cf.similarity import SimilarityEngine, CENTERING_MODES
from recsys.cf.types import (
    Algorithm,
    Rating,
    Recommendation,
    RATING_MIN,
    RATING_MAX,
    RATING_MIDPOINT,
)
from .fallback import PopularityFallback, COLD_START_CONFIDENCE_CEILING

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = 'config/recommender_config.yaml'

# Config fields a parameter model may override per request
TUNABLE_PARAMETERS = (
    'neighborhood_size',
    'min_similarity',
    'min_rating',
    'seed_count',
    'item_neighbors',
    'confidence_shrinkage',
)


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class RecommenderConfig:
    """Configuration for RecommendationEngine."""

    # Output
    limit: int = 10

    # User-based
    neighborhood_size: int = 20
    min_similarity: float = 0.0
    pearson_centering: str = 'midpoint'

    # Both CF paths: only neighbour/seed ratings >= min_rating count
    min_rating: float = 3.0

    # Item-based
    seed_count: int = 5
    item_neighbors: int = 20

    # Confidence = mean_similarity * n / (n + confidence_shrinkage)
    confidence_shrinkage: float = 2.0

    # Cold start: fewer ratings than this -> popularity fallback
    cold_start_threshold: int = 1
    cold_start_max_confidence: float = 0.5

    # Hybrid: each source produces limit * candidate_multiplier candidates
    candidate_multiplier: int = 2

    # Parameter models
    user_model_name: str = 'user_based_cf'
    item_model_name: str = 'item_based_cf'
    use_baseline_model: bool = True
    validate_checksum: bool = False

    # Caches
    similarity_cache_ttl_seconds: float = 3600.0
    popularity_cache_ttl_seconds: float = 300.0

    def __post_init__(self):
        if self.pearson_centering not in CENTERING_MODES:
            raise ValueError(
                f"pearson_centering must be one of {CENTERING_MODES}, "
                f"got {self.pearson_centering!r}"
            )
        if not 0.0 <= self.cold_start_max_confidence < COLD_START_CONFIDENCE_CEILING:
            raise ValueError(
                f"cold_start_max_confidence must be in [0, {COLD_START_CONFIDENCE_CEILING}), "
                f"got {self.cold_start_max_confidence}"
            )
        if self.confidence_shrinkage <= 0:
            raise ValueError("confidence_shrinkage must be positive")
        if self.candidate_multiplier < 1:
            raise ValueError("candidate_multiplier must be >= 1")
        if self.cold_start_threshold < 0:
            raise ValueError("cold_start_threshold must be >= 0")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RecommenderConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown recommender config keys: {unknown}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def with_overrides(self, overrides: Dict[str, Any]) -> 'RecommenderConfig':
        """Copy with the tunable fields present in overrides replaced."""
        applied = {k: overrides[k] for k in TUNABLE_PARAMETERS if k in overrides}
        return replace(self, **applied) if applied else self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(config_path: Optional[str] = None) -> RecommenderConfig:
    """
    Load RecommenderConfig from YAML.

    The path defaults to $RECOMMENDER_CONFIG, then config/recommender_config.yaml.
    A missing or invalid file yields the defaults.
    """
    path = config_path or os.getenv('RECOMMENDER_CONFIG', DEFAULT_CONFIG_PATH)

    if not os.path.exists(path):
        logger.info(f"Recommender config not found at {path}, using defaults")
        return RecommenderConfig()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        config = RecommenderConfig.from_dict(data.get('recommender', {}) or {})
        logger.info(f"Loaded recommender config from {path}")
        return config
    except (OSError, yaml.YAMLError, AttributeError, TypeError, ValueError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return RecommenderConfig()


# ============================================================================
# Recommendation Engine
# ============================================================================

class RecommendationEngine:
    """
    Wine recommendation engine over a RatingStore.

    Features:
    - User-based and item-based collaborative filtering
    - Confidence-weighted hybrid blending
    - Popularity fallback for cold-start diners
    - Never recommends a wine the diner already rated

    Rating store failures propagate. If no parameter model can be resolved
    (nothing persisted and baseline disabled) requests fail with the
    manager's ModelNotFoundError.

    Example:
        >>> engine = RecommendationEngine(store, ModelManager('artifacts/models'))
        >>> recs = await engine.get_user_based_recommendations('diner-17')
    """

    def __init__(
        self,
        rating_store: RatingStore,
        model_manager: Optional[ModelManager] = None,
        config: Optional[RecommenderConfig] = None,
        config_path: Optional[str] = None
    ):
        """
        Args:
            rating_store: Historical ratings
            model_manager: Resolves parameter models (default: ModelManager())
            config: Engine configuration (default: loaded from YAML)
            config_path: YAML path used when config is None
        """
        self.store = rating_store
        self.config = config or load_config(config_path)
        self.model_manager = model_manager or ModelManager()

        self.similarity = SimilarityEngine(
            rating_store,
            centering=self.config.pearson_centering,
            cache_ttl_seconds=self.config.similarity_cache_ttl_seconds
        )
        self.fallback = PopularityFallback(
            rating_store,
            max_confidence=self.config.cold_start_max_confidence,
            shrinkage=self.config.confidence_shrinkage,
            cache_ttl_seconds=self.config.popularity_cache_ttl_seconds
        )

        logger.info(f"RecommendationEngine initialized: {format_params(self.config.to_dict())}")

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    async def _resolve_parameters(self, model_name: str) -> Tuple[RecommenderConfig, str]:
        """Effective config and model version for one request."""
        artifact = await self.model_manager.load_model(
            model_name,
            fallback=True,
            baseline=self.config.use_baseline_model,
            validate_checksum=self.config.validate_checksum
        )
        return self.config.with_overrides(artifact.hyperparameters), artifact.version

    def _limit(self, limit: Optional[int]) -> int:
        return self.config.limit if limit is None else limit

    def _is_cold_start(self, ratings: List[Rating]) -> bool:
        return len(ratings) < self.config.cold_start_threshold

    def _cold_start(self, user_id: Any, ratings: List[Rating], limit: int) -> List[Recommendation]:
        recs = self.fallback.recommend(limit=limit, exclude_ids={r.wine_id for r in ratings})
        logger.info(f"Cold start for user={user_id}: ratings={len(ratings)}, returned={len(recs)}")
        return recs

    @staticmethod
    def _confidence(similarity_sum: float, support: int, shrinkage: float) -> float:
        if support <= 0:
            return 0.0
        mean_similarity = similarity_sum / support
        return float(np.clip(mean_similarity * support / (support + shrinkage), 0.0, 1.0))

    @staticmethod
    def _rank(recs: List[Recommendation], limit: int) -> List[Recommendation]:
        return sorted(recs, key=lambda r: -r.predicted_rating)[:max(limit, 0)]

    def filter_by_context(
        self,
        recs: List[Recommendation],
        dish_context: Optional[Dict[str, Any]] = None
    ) -> List[Recommendation]:
        """Context filter hook. Pass-through: pairing rules are applied downstream."""
        if dish_context:
            logger.debug(f"Dish context received: {format_params(dish_context)}")
        return list(recs)

    # ------------------------------------------------------------------------
    # User-based
    # ------------------------------------------------------------------------

    def _candidate_users(self, user_id: Any, ratings: List[Rating]) -> List[str]:
        """Other raters of the diner's wines, first-seen order."""
        target = str(user_id)
        pool: List[str] = []
        seen = set()
        for rating in ratings:
            for other in self.store.ratings_for_wine(rating.wine_id):
                if other.user_id != target and other.user_id not in seen:
                    seen.add(other.user_id)
                    pool.append(other.user_id)
        return pool

    def _neighbours(
        self,
        user_id: Any,
        ratings: List[Rating],
        pool: List[str],
        params: RecommenderConfig
    ) -> List[Dict[str, Any]]:
        similar = self.similarity.find_similar_users(user_id, ratings, pool)
        return [s for s in similar if s['similarity'] > params.min_similarity][:params.neighborhood_size]

    def _user_based(
        self,
        user_id: Any,
        ratings: List[Rating],
        params: RecommenderConfig,
        limit: int,
        model_version: Optional[str]
    ) -> List[Recommendation]:
        rated = {r.wine_id for r in ratings}
        neighbours = self._neighbours(user_id, ratings, self._candidate_users(user_id, ratings), params)

        # wine_id -> [weighted rating sum, similarity sum, support]
        acc: Dict[int, List[float]] = {}
        for neighbour in neighbours:
            sim = neighbour['similarity']
            for r in self.store.ratings_for_user(neighbour['user_id']):
                if r.wine_id in rated or r.rating < params.min_rating:
                    continue
                entry = acc.setdefault(r.wine_id, [0.0, 0.0, 0])
                entry[0] += sim * r.rating
                entry[1] += sim
                entry[2] += 1

        recs = []
        for wine_id, (weighted, sim_sum, support) in acc.items():
            if sim_sum <= 0:
                continue
            recs.append(Recommendation(
                wine_id=wine_id,
                predicted_rating=float(np.clip(weighted / sim_sum, RATING_MIN, RATING_MAX)),
                confidence=self._confidence(sim_sum, int(support), params.confidence_shrinkage),
                algorithm=Algorithm.USER_BASED,
                support=int(support),
                model_version=model_version
            ))

        return self._rank(recs, limit)

    async def get_user_based_recommendations(
        self,
        user_id: Any,
        dish_context: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None
    ) -> List[Recommendation]:
        """
        Recommend wines liked by the diner's most similar neighbours.

        Args:
            user_id: Diner id (unknown ids are treated as cold start)
            dish_context: Optional dish being paired
            limit: Max recommendations (default: config.limit)

        Returns:
            Recommendations by predicted rating, descending
        """
        start_time = time.perf_counter()
        limit = self._limit(limit)
        ratings = self.store.ratings_for_user(user_id)

        if self._is_cold_start(ratings):
            return self.filter_by_context(self._cold_start(user_id, ratings, limit), dish_context)

        params, version = await self._resolve_parameters(self.config.user_model_name)
        recs = self._user_based(user_id, ratings, params, limit, version)

        logger.info(
            f"user_based_cf user={user_id} | " + format_metrics({
                'ratings': len(ratings),
                'returned': len(recs),
                'model_version': version,
                'latency_ms': (time.perf_counter() - start_time) * 1000,
            })
        )
        return self.filter_by_context(recs, dish_context)

    # ------------------------------------------------------------------------
    # Item-based
    # ------------------------------------------------------------------------

    def _item_based(
        self,
        ratings: List[Rating],
        params: RecommenderConfig,
        limit: int,
        model_version: Optional[str]
    ) -> List[Recommendation]:
        rated = {r.wine_id for r in ratings}
        liked = [r for r in ratings if r.rating >= params.min_rating]
        seeds = sorted(liked, key=lambda r: -r.rating)[:params.seed_count]

        acc: Dict[int, List[float]] = {}
        for seed in seeds:
            for similar in self.similarity.find_similar_items(seed.wine_id, params.item_neighbors):
                wine_id = similar['wine_id']
                if wine_id in rated:
                    continue
                sim = similar['similarity']
                entry = acc.setdefault(wine_id, [0.0, 0.0, 0])
                entry[0] += sim * seed.rating
                entry[1] += sim
                entry[2] += 1

        recs = []
        for wine_id, (weighted, sim_sum, support) in acc.items():
            if sim_sum <= 0:
                continue
            recs.append(Recommendation(
                wine_id=wine_id,
                predicted_rating=float(np.clip(weighted / sim_sum, RATING_MIN, RATING_MAX)),
                confidence=self._confidence(sim_sum, int(support), params.confidence_shrinkage),
                algorithm=Algorithm.ITEM_BASED,
                support=int(support),
                model_version=model_version
            ))

        return self._rank(recs, limit)

    async def get_item_based_recommendations(
        self,
        user_id: Any,
        dish_context: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None
    ) -> List[Recommendation]:
        """Recommend wines similar to the diner's highest-rated wines."""
        start_time = time.perf_counter()
        limit = self._limit(limit)
        ratings = self.store.ratings_for_user(user_id)

        if self._is_cold_start(ratings):
            return self.filter_by_context(self._cold_start(user_id, ratings, limit), dish_context)

        params, version = await self._resolve_parameters(self.config.item_model_name)
        recs = self._item_based(ratings, params, limit, version)

        logger.info(
            f"item_based_cf user={user_id} | " + format_metrics({
                'ratings': len(ratings),
                'returned': len(recs),
                'model_version': version,
                'latency_ms': (time.perf_counter() - start_time) * 1000,
            })
        )
        return self.filter_by_context(recs, dish_context)

    # ------------------------------------------------------------------------
    # Hybrid
    # ------------------------------------------------------------------------

    @staticmethod
    def blend_recommendations(
        user_recs: List[Recommendation],
        item_recs: List[Recommendation]
    ) -> List[Recommendation]:
        """
        Merge two recommendation lists by confidence weighting.

        A wine present in both gets
            rating     = (r1*c1 + r2*c2) / (c1 + c2)
            confidence = (c1^2 + c2^2) / (c1 + c2)
        A wine present in one keeps that source's values. All results are
        tagged hybrid; order is first appearance (user list first).
        """
        merged: Dict[int, Recommendation] = {}

        for rec in list(user_recs) + list(item_recs):
            current = merged.get(rec.wine_id)
            if current is None:
                merged[rec.wine_id] = replace(rec, algorithm=Algorithm.HYBRID)
                continue

            c1, c2 = current.confidence, rec.confidence
            total = c1 + c2
            if total > 0:
                rating = (current.predicted_rating * c1 + rec.predicted_rating * c2) / total
                confidence = (c1 * c1 + c2 * c2) / total
            else:
                rating = (current.predicted_rating + rec.predicted_rating) / 2
                confidence = 0.0

            merged[rec.wine_id] = replace(
                current,
                predicted_rating=rating,
                confidence=confidence,
                support=current.support + rec.support,
                model_version=current.model_version or rec.model_version
            )

        return list(merged.values())

    async def get_hybrid_recommendations(
        self,
        user_id: Any,
        dish_context: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None
    ) -> List[Recommendation]:
        """Confidence-weighted blend of user-based and item-based results."""
        limit = self._limit(limit)
        ratings = self.store.ratings_for_user(user_id)

        if self._is_cold_start(ratings):
            return self.filter_by_context(self._cold_start(user_id, ratings, limit), dish_context)

        candidates = limit * self.config.candidate_multiplier
        user_recs, item_recs = await asyncio.gather(
            self.get_user_based_recommendations(user_id, limit=candidates),
            self.get_item_based_recommendations(user_id, limit=candidates)
        )

        recs = self._rank(self.blend_recommendations(user_recs, item_recs), limit)
        logger.info(
            f"hybrid user={user_id} | " + format_metrics({
                'user_candidates': len(user_recs),
                'item_candidates': len(item_recs),
                'returned': len(recs),
            })
        )
        return self.filter_by_context(recs, dish_context)

    # ------------------------------------------------------------------------
    # Dispatch & single predictions
    # ------------------------------------------------------------------------

    async def get_popular_recommendations(
        self,
        user_id: Any,
        dish_context: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None
    ) -> List[Recommendation]:
        """Popularity fallback regardless of history."""
        ratings = self.store.ratings_for_user(user_id)
        return self.filter_by_context(
            self._cold_start(user_id, ratings, self._limit(limit)), dish_context
        )

    async def get_recommendations(
        self,
        user_id: Any,
        algorithm: Any = Algorithm.HYBRID,
        dish_context: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None
    ) -> List[Recommendation]:
        """
        Dispatch on an Algorithm tag (or its string value).

        Raises:
            ValueError: Unknown algorithm
        """
        handlers: Dict[Algorithm, Callable[..., Awaitable[List[Recommendation]]]] = {
            Algorithm.USER_BASED: self.get_user_based_recommendations,
            Algorithm.ITEM_BASED: self.get_item_based_recommendations,
            Algorithm.HYBRID: self.get_hybrid_recommendations,
            Algorithm.POPULARITY_FALLBACK: self.get_popular_recommendations,
        }
        return await handlers[Algorithm(algorithm)](user_id, dish_context=dish_context, limit=limit)

    async def predict_rating(self, user_id: Any, wine_id: int) -> float:
        """
        Predicted rating of one wine for one diner.

        Neighbourhood estimate from similar raters of the wine; falls back
        to the wine's average rating, then to the scale midpoint. Returns
        the diner's own rating if they already rated the wine.
        """
        ratings = self.store.ratings_for_user(user_id)
        for r in ratings:
            if r.wine_id == wine_id:
                return float(r.rating)

        wine_ratings = self.store.ratings_for_wine(wine_id)
        if not wine_ratings:
            return RATING_MIDPOINT

        if ratings:
            params, _ = await self._resolve_parameters(self.config.user_model_name)
            by_user = {r.user_id: r.rating for r in wine_ratings}
            neighbours = self._neighbours(user_id, ratings, list(by_user), params)

            sim_sum = sum(n['similarity'] for n in neighbours)
            if sim_sum > 0:
                weighted = sum(n['similarity'] * by_user[n['user_id']] for n in neighbours)
                return float(np.clip(weighted / sim_sum, RATING_MIN, RATING_MAX))

        avg = sum(r.rating for r in wine_ratings) / len(wine_ratings)
        return float(np.clip(avg, RATING_MIN, RATING_MAX))

    # ------------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------------

    def clear_caches(self) -> None:
        self.similarity.clear_cache()
        self.fallback.clear_cache()
        logger.info("Recommendation caches cleared")

    def get_stats(self) -> Dict[str, Any]:
        return {
            'config': self.config.to_dict(),
            'similarity_cache': self.similarity.get_cache_stats(),
            'model_manager': self.model_manager.get_stats(),
        }

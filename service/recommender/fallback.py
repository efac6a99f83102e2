"""
Popularity Fallback for Cold-Start Diners.

Diners without enough rating history get the cellar's best-rated wines,
ranked by average rating weighted by how much evidence stands behind it.
Confidence is capped below the CF paths so cold-start suggestions never
look more certain than personalised ones.

    confidence = max_confidence * count / (count + shrinkage)
    rank key   = avg_rating * confidence

Example:
    >>> from service.recommender.fallback import PopularityFallback
    >>> fallback = PopularityFallback(store, max_confidence=0.5)
    >>> recs = fallback.recommend(limit=10, exclude_ids={3, 7})
"""

from typing import Dict, List, Optional, Any, Set, Iterable
import logging

import numpy as np

from recsys.cf.cache import LRUCache
from recsys.cf.rating_store import RatingStore
from recsys.cf.types import Algorithm, Recommendation, RATING_MIN, RATING_MAX

logger = logging.getLogger(__name__)


# Cold-start confidence must stay strictly below this
COLD_START_CONFIDENCE_CEILING = 0.8


class PopularityFallback:
    """
    Popularity-based recommendations from the rating store.

    Example:
        >>> fallback = PopularityFallback(store)
        >>> fallback.recommend(limit=5)
    """

    def __init__(
        self,
        rating_store: RatingStore,
        max_confidence: float = 0.5,
        shrinkage: float = 2.0,
        candidate_pool: int = 100,
        cache_ttl_seconds: Optional[float] = 300.0
    ):
        """
        Args:
            rating_store: Source of top-rated wines
            max_confidence: Confidence asymptote, must be < 0.8
            shrinkage: Rating count at which confidence reaches half the asymptote
            candidate_pool: Minimum number of popular wines fetched per request
            cache_ttl_seconds: How long a popularity snapshot is reused
        """
        if not 0.0 <= max_confidence < COLD_START_CONFIDENCE_CEILING:
            raise ValueError(
                f"max_confidence must be in [0, {COLD_START_CONFIDENCE_CEILING}), "
                f"got {max_confidence}"
            )
        if shrinkage <= 0:
            raise ValueError(f"shrinkage must be positive, got {shrinkage}")

        self.store = rating_store
        self.max_confidence = max_confidence
        self.shrinkage = shrinkage
        self.candidate_pool = candidate_pool

        self._cache = LRUCache(max_size=16, ttl_seconds=cache_ttl_seconds, name="popularity")

    def confidence(self, rating_count: int) -> float:
        return self.max_confidence * rating_count / (rating_count + self.shrinkage)

    def _popular_wines(self, pool_size: int) -> List[Dict[str, Any]]:
        cached = self._cache.get(pool_size)
        if cached is not None:
            return cached

        popular = self.store.top_rated_wines(limit=pool_size)
        self._cache.put(pool_size, popular)
        return popular

    def recommend(
        self,
        limit: int = 10,
        exclude_ids: Optional[Iterable[int]] = None
    ) -> List[Recommendation]:
        """
        Top wines by avg_rating * confidence.

        Args:
            limit: Number of recommendations
            exclude_ids: Wines never to return (the diner's rated wines)

        Returns:
            Recommendations tagged popularity_fallback
        """
        if limit <= 0:
            return []

        exclude: Set[int] = set(exclude_ids or [])
        pool_size = max(self.candidate_pool, limit + len(exclude))

        scored = []
        for wine in self._popular_wines(pool_size):
            wine_id = int(wine['wine_id'])
            if wine_id in exclude:
                continue

            count = int(wine['rating_count'])
            confidence = self.confidence(count)
            avg = float(np.clip(wine['avg_rating'], RATING_MIN, RATING_MAX))
            scored.append((avg * confidence, Recommendation(
                wine_id=wine_id,
                predicted_rating=avg,
                confidence=confidence,
                algorithm=Algorithm.POPULARITY_FALLBACK,
                support=count
            )))

        scored.sort(key=lambda pair: -pair[0])
        recs = [rec for _, rec in scored[:limit]]

        logger.debug(f"Popularity fallback: candidates={len(scored)}, returned={len(recs)}")
        return recs

    def clear_cache(self) -> None:
        self._cache.clear()

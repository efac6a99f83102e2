"""
User-User and Item-Item Similarity.

Pure similarity maths plus the neighbourhood searches that feed the
recommendation engine. Ratings are read from a RatingStore; item
neighbourhoods are memoized in an LRU cache with TTL.

Measures:
- Users: Pearson correlation over co-rated wines. By default deviations
  are taken from the rating-scale midpoint (constrained Pearson), so two
  diners who both liked the same wines correlate positively even when
  they ordered them differently. ``centering='mean'`` gives the classic
  mean-centered coefficient.
- Wines: cosine over the shared raters, clipped to [0, 1].

Example:
    >>> from recsys.cf.similarity import SimilarityEngine
    >>> engine = SimilarityEngine(store)
    >>> engine.calculate_user_similarity(
    ...     [{'wine_id': 1, 'rating': 5}, {'wine_id': 2, 'rating': 4}],
    ...     [{'wine_id': 1, 'rating': 4}, {'wine_id': 2, 'rating': 5}],
    ... )
    0.8
    >>> engine.find_similar_items(wine_id=42, limit=10)
"""

from typing import Dict, List, Optional, Any, Iterable, Tuple
from collections.abc import Mapping
import logging
import time

import numpy as np

from .types import Rating, SimilarityScore, SimilarityBasis, RATING_MIDPOINT
from .rating_store import RatingStore
from .cache import LRUCache

logger = logging.getLogger(__name__)


CENTERING_MODES = ('midpoint', 'mean')


# ============================================================================
# Helpers
# ============================================================================

def _rating_map(ratings: Iterable[Any], key: str = 'wine_id') -> Dict[Any, float]:
    """
    Collapse a collection of ratings into {key: rating}.

    Accepts Rating objects or mappings carrying ``key`` and ``rating``.
    Later duplicates win.
    """
    out: Dict[Any, float] = {}
    for r in ratings or []:
        if isinstance(r, Rating):
            out[getattr(r, key)] = float(r.rating)
        elif isinstance(r, Mapping):
            out[r[key]] = float(r['rating'])
        else:
            raise TypeError(f"Unsupported rating type: {type(r).__name__}")
    return out


def _aligned(a: Dict[Any, float], b: Dict[Any, float]) -> Tuple[np.ndarray, np.ndarray]:
    """Vectors over the common keys, in a fixed key order."""
    common = [k for k in a if k in b]
    x = np.array([a[k] for k in common], dtype=np.float64)
    y = np.array([b[k] for k in common], dtype=np.float64)
    return x, y


def pearson(
    x: np.ndarray,
    y: np.ndarray,
    centering: str = 'midpoint',
    midpoint: float = RATING_MIDPOINT
) -> float:
    """Pearson coefficient of two aligned vectors; 0 when undefined."""
    if len(x) == 0:
        return 0.0

    # Zero variance on either side: correlation undefined
    if np.all(x == x[0]) or np.all(y == y[0]):
        return 0.0

    if centering == 'mean':
        dx, dy = x - x.mean(), y - y.mean()
    else:
        dx, dy = x - midpoint, y - midpoint

    denom = np.sqrt(np.sum(dx * dx)) * np.sqrt(np.sum(dy * dy))
    if denom == 0:
        return 0.0

    return float(np.clip(np.sum(dx * dy) / denom, -1.0, 1.0))


def cosine(x: np.ndarray, y: np.ndarray) -> float:
    """Cosine of two aligned vectors clipped to [0, 1]; 0 when undefined."""
    if len(x) == 0:
        return 0.0

    norm_x = np.linalg.norm(x)
    norm_y = np.linalg.norm(y)
    if norm_x == 0 or norm_y == 0:
        return 0.0

    return float(np.clip(np.dot(x, y) / (norm_x * norm_y), 0.0, 1.0))


# ============================================================================
# Similarity Engine
# ============================================================================

class SimilarityEngine:
    """
    Computes user and wine similarities against a RatingStore.

    Store failures propagate to the caller.
    """

    def __init__(
        self,
        rating_store: RatingStore,
        centering: str = 'midpoint',
        rating_midpoint: float = RATING_MIDPOINT,
        cache_size: int = 5000,
        cache_ttl_seconds: Optional[float] = 3600.0
    ):
        if centering not in CENTERING_MODES:
            raise ValueError(
                f"centering must be one of {CENTERING_MODES}, got {centering!r}"
            )

        self.store = rating_store
        self.centering = centering
        self.rating_midpoint = rating_midpoint

        self.item_cache = LRUCache(
            max_size=cache_size,
            ttl_seconds=cache_ttl_seconds,
            name="item_similarity"
        )

    # ------------------------------------------------------------------------
    # User-user
    # ------------------------------------------------------------------------

    def calculate_user_similarity(
        self,
        ratings_a: Iterable[Any],
        ratings_b: Iterable[Any]
    ) -> float:
        """
        Pearson similarity over wines rated by both users.

        Returns:
            Score in [-1, 1]; exactly 0 with no overlap or a constant vector
        """
        x, y = _aligned(_rating_map(ratings_a), _rating_map(ratings_b))
        return pearson(x, y, centering=self.centering, midpoint=self.rating_midpoint)

    def find_similar_users(
        self,
        target_user_id: Any,
        target_ratings: Iterable[Any],
        candidate_pool: Iterable[Any]
    ) -> List[Dict[str, Any]]:
        """
        Score every candidate against the target.

        Args:
            target_user_id: Excluded from the results
            target_ratings: Target's ratings
            candidate_pool: Candidate user ids (duplicates ignored)

        Returns:
            [{'user_id', 'similarity'}] by descending similarity; ties keep
            pool order
        """
        target_map = _rating_map(target_ratings)
        target_key = str(target_user_id)

        results = []
        seen = set()
        for candidate in candidate_pool:
            key = str(candidate)
            if key == target_key or key in seen:
                continue
            seen.add(key)

            x, y = _aligned(target_map, _rating_map(self.store.ratings_for_user(candidate)))
            sim = pearson(x, y, centering=self.centering, midpoint=self.rating_midpoint)
            results.append({'user_id': candidate, 'similarity': sim})

        results.sort(key=lambda r: -r['similarity'])
        return results

    # ------------------------------------------------------------------------
    # Item-item
    # ------------------------------------------------------------------------

    def calculate_item_similarity(
        self,
        item_a_ratings: Iterable[Any],
        item_b_ratings: Iterable[Any]
    ) -> float:
        """Cosine similarity over users who rated both wines, in [0, 1]."""
        x, y = _aligned(
            _rating_map(item_a_ratings, key='user_id'),
            _rating_map(item_b_ratings, key='user_id')
        )
        return cosine(x, y)

    def _compute_item_neighbours(self, wine_id: int) -> List[SimilarityScore]:
        raters = self.store.ratings_for_wine(wine_id)
        wine_vec = _rating_map(raters, key='user_id')
        if not wine_vec:
            return []

        # Candidates: wines co-rated by this wine's raters, first-seen order
        candidates: List[int] = []
        seen = {wine_id}
        for user_id in wine_vec:
            for r in self.store.ratings_for_user(user_id):
                if r.wine_id not in seen:
                    seen.add(r.wine_id)
                    candidates.append(r.wine_id)

        scores = []
        for candidate in candidates:
            x, y = _aligned(
                wine_vec,
                _rating_map(self.store.ratings_for_wine(candidate), key='user_id')
            )
            sim = cosine(x, y)
            if sim > 0:
                scores.append(SimilarityScore(
                    subject_id=wine_id,
                    candidate_id=candidate,
                    score=sim,
                    basis=SimilarityBasis.COSINE
                ))

        scores.sort(key=lambda s: -s.score)
        return scores

    def find_similar_items(self, wine_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Most similar wines to ``wine_id``.

        Returns:
            [{'wine_id', 'similarity'}], positive similarities only, descending
        """
        key = ('items', wine_id)
        scores = self.item_cache.get(key)
        if scores is None:
            scores = self._compute_item_neighbours(wine_id)
            self.item_cache.put(key, scores)

        return [
            {'wine_id': s.candidate_id, 'similarity': s.score}
            for s in scores[:max(limit, 0)]
        ]

    def precompute_item_similarities(self, wine_ids: Iterable[int]) -> int:
        """
        Warm the item-neighbourhood cache.

        Returns:
            Number of wines computed
        """
        start = time.time()
        count = 0
        for wine_id in wine_ids:
            self.item_cache.put(('items', wine_id), self._compute_item_neighbours(wine_id))
            count += 1

        logger.info(
            f"Precomputed item similarities: wines={count}, "
            f"took={(time.time() - start) * 1000:.1f}ms"
        )
        return count

    def clear_cache(self) -> None:
        self.item_cache.clear()
        logger.info("Similarity cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.item_cache.stats()

"""
CF (Collaborative Filtering) Module.

This module provides the wine collaborative-filtering core:
- Rating value types and the rating store interface
- User-user (Pearson) and item-item (cosine) similarity
- Model artifact registry and lifecycle management
- Logging helpers

Submodules:
    types: Rating, SimilarityScore, Recommendation, Algorithm
    errors: Typed failure taxonomy
    rating_store: RatingStore interface and DataFrameRatingStore
    similarity: SimilarityEngine
    cache: Thread-safe LRU cache with TTL
    registry: Model versioning and management
    logging_utils: Service logging

Example:
    >>> from recsys.cf.rating_store import DataFrameRatingStore
    >>> from recsys.cf.similarity import SimilarityEngine
    >>> from recsys.cf.registry import ModelManager
    >>>
    >>> store = DataFrameRatingStore(ratings_df)
    >>> engine = SimilarityEngine(store)
    >>> engine.find_similar_items(wine_id=42, limit=5)
"""

# Note: We don't import submodules here to avoid circular imports
# Users should import from specific submodules:
#   from recsys.cf.similarity import SimilarityEngine
#   from recsys.cf.registry import ModelManager, ModelRegistry

__all__ = [
    'types',
    'errors',
    'rating_store',
    'similarity',
    'cache',
    'registry',
    'logging_utils',
]

"""
Recommender Service Package.

This package provides the wine recommendation engine and its cold-start
strategy.

Main components:
- RecommendationEngine: user-based, item-based and hybrid CF
- RecommenderConfig: serving configuration, loaded from YAML
- PopularityFallback: cold-start handling

Example:
    >>> from service.recommender import RecommendationEngine
    >>> engine = RecommendationEngine(store)
    >>> recs = await engine.get_user_based_recommendations('diner-17', limit=10)
"""

from .recommender import (
    RecommendationEngine,
    RecommenderConfig,
    load_config,
    DEFAULT_CONFIG_PATH,
    TUNABLE_PARAMETERS,
)
from .fallback import PopularityFallback, COLD_START_CONFIDENCE_CEILING

__all__ = [
    # Core
    'RecommendationEngine',
    'RecommenderConfig',
    'load_config',
    'DEFAULT_CONFIG_PATH',
    'TUNABLE_PARAMETERS',

    # Cold start
    'PopularityFallback',
    'COLD_START_CONFIDENCE_CEILING',
]

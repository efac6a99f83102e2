"""
Wine Recommendation Service Package.

This package provides the serving layer for wine recommendations.

Components:
- recommender: Core recommendation engine
    - RecommendationEngine: user-based, item-based and hybrid CF
    - RecommenderConfig: serving configuration (YAML-backed)
    - PopularityFallback: cold-start strategy

Usage:
    from service.recommender import RecommendationEngine

    engine = RecommendationEngine(store, model_manager)
    recs = await engine.get_hybrid_recommendations('diner-17', limit=10)
"""

from service.recommender import (
    RecommendationEngine,
    RecommenderConfig,
    PopularityFallback,
    load_config,
)

__all__ = [
    'RecommendationEngine',
    'RecommenderConfig',
    'PopularityFallback',
    'load_config',
]

__version__ = "1.0.0"

"""
Core Data Types for Wine Collaborative Filtering.

This module defines the value objects shared by the similarity engine,
the recommendation engine and the serving layer:
- Rating: one historical diner rating of a wine
- SimilarityScore: ephemeral user-user or item-item similarity
- Recommendation: one scored wine suggestion
- Algorithm: tag selecting the recommendation strategy

Example:
    >>> from recsys.cf.types import Rating, Recommendation, Algorithm
    >>> r = Rating(user_id='u1', wine_id=42, rating=4.5)
    >>> rec = Recommendation(wine_id=7, predicted_rating=4.1, confidence=0.6,
    ...                      algorithm=Algorithm.USER_BASED)
"""

from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


RATING_MIN = 1.0
RATING_MAX = 5.0
RATING_MIDPOINT = (RATING_MIN + RATING_MAX) / 2


class Algorithm(str, Enum):
    """Recommendation strategy tag."""
    USER_BASED = 'user_based_cf'
    ITEM_BASED = 'item_based_cf'
    HYBRID = 'hybrid'
    POPULARITY_FALLBACK = 'popularity_fallback'


class SimilarityBasis(str, Enum):
    """Similarity measure used to produce a SimilarityScore."""
    PEARSON = 'pearson'
    COSINE = 'cosine'


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class Rating:
    """Single diner rating of a wine. Immutable once recorded."""
    user_id: str
    wine_id: int
    rating: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class SimilarityScore:
    """Computed similarity between a subject and a candidate (user or wine)."""
    subject_id: Any
    candidate_id: Any
    score: float
    basis: SimilarityBasis


@dataclass
class Recommendation:
    """
    Single wine recommendation.

    Attributes:
        wine_id: Recommended wine
        predicted_rating: Predicted rating on the 1-5 scale
        confidence: Evidence strength in [0, 1]
        algorithm: Strategy that produced the score
        support: Number of neighbours / seeds / raters behind the score
        model_version: Version of the parameter model used (if any)
    """
    wine_id: int
    predicted_rating: float
    confidence: float
    algorithm: Algorithm
    support: int = 0
    model_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'wine_id': int(self.wine_id),
            'predicted_rating': float(self.predicted_rating),
            'confidence': float(self.confidence),
            'algorithm': self.algorithm.value,
            'support': int(self.support),
            'model_version': self.model_version,
        }

    def __repr__(self) -> str:
        return (
            f"Recommendation(wine_id={self.wine_id}, "
            f"predicted={self.predicted_rating:.3f}, "
            f"confidence={self.confidence:.3f}, "
            f"algorithm={self.algorithm.value})"
        )

"""
Rating Store Accessors.

The rating store is the read-only supplier of historical ratings for the
CF engine. The production store lives behind the cellar database; this
module defines the interface the engine consumes and a pandas-backed
implementation used for offline tooling and tests.

Example:
    >>> from recsys.cf.rating_store import DataFrameRatingStore
    >>> store = DataFrameRatingStore.from_records([
    ...     {'user_id': 'u1', 'wine_id': 1, 'rating': 5.0},
    ... ])
    >>> store.ratings_for_user('u1')
"""

from typing import Dict, List, Any, Iterable
from abc import ABC, abstractmethod
from datetime import datetime
import logging

import pandas as pd

from .types import Rating
from .errors import RatingStoreError

logger = logging.getLogger(__name__)


RATING_COLUMNS = ['user_id', 'wine_id', 'rating', 'timestamp']


# ============================================================================
# Interface
# ============================================================================

class RatingStore(ABC):
    """Read-only access to historical ratings."""

    @abstractmethod
    def ratings_for_user(self, user_id: Any) -> List[Rating]:
        """All ratings recorded by a user (empty for unknown users)."""

    @abstractmethod
    def ratings_for_wine(self, wine_id: int) -> List[Rating]:
        """All ratings recorded for a wine."""

    @abstractmethod
    def top_rated_wines(self, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Popularity query used for cold start.

        Returns:
            List of {'wine_id', 'avg_rating', 'rating_count'} dicts
        """


# ============================================================================
# DataFrame-backed store
# ============================================================================

class DataFrameRatingStore(RatingStore):
    """
    Rating store over an in-memory pandas DataFrame.

    Columns: user_id, wine_id, rating, timestamp (timestamp optional).
    """

    def __init__(self, ratings: pd.DataFrame):
        missing = [c for c in ('user_id', 'wine_id', 'rating') if c not in ratings.columns]
        if missing:
            raise RatingStoreError(f"Ratings frame missing columns: {missing}")

        df = ratings.copy()
        if 'timestamp' not in df.columns:
            df['timestamp'] = pd.NaT
        df['user_id'] = df['user_id'].astype(str)
        df['wine_id'] = df['wine_id'].astype(int)
        df['rating'] = df['rating'].astype(float)

        self._df = df[RATING_COLUMNS].reset_index(drop=True)
        logger.debug(
            f"DataFrameRatingStore loaded: ratings={len(self._df)}, "
            f"users={self._df['user_id'].nunique()}, wines={self._df['wine_id'].nunique()}"
        )

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> 'DataFrameRatingStore':
        """Build a store from an iterable of rating dicts."""
        rows = list(records)
        if not rows:
            return cls(pd.DataFrame(columns=RATING_COLUMNS))
        return cls(pd.DataFrame(rows))

    @property
    def frame(self) -> pd.DataFrame:
        return self._df

    @staticmethod
    def _to_rating(row: Any) -> Rating:
        ts = row.timestamp
        if ts is None or pd.isna(ts):
            ts = datetime.min
        elif isinstance(ts, pd.Timestamp):
            ts = ts.to_pydatetime()
        return Rating(
            user_id=str(row.user_id),
            wine_id=int(row.wine_id),
            rating=float(row.rating),
            timestamp=ts
        )

    def ratings_for_user(self, user_id: Any) -> List[Rating]:
        if user_id is None:
            return []
        rows = self._df[self._df['user_id'] == str(user_id)]
        return [self._to_rating(row) for row in rows.itertuples(index=False)]

    def ratings_for_wine(self, wine_id: int) -> List[Rating]:
        rows = self._df[self._df['wine_id'] == int(wine_id)]
        return [self._to_rating(row) for row in rows.itertuples(index=False)]

    def top_rated_wines(self, limit: int = 10, min_count: int = 1) -> List[Dict[str, Any]]:
        if self._df.empty or limit <= 0:
            return []

        stats = (
            self._df.groupby('wine_id', sort=True)['rating']
            .agg(avg_rating='mean', rating_count='count')
            .reset_index()
        )
        stats = stats[stats['rating_count'] >= min_count]

        # Deterministic: avg desc, count desc, wine_id asc
        stats = stats.sort_values(
            ['avg_rating', 'rating_count', 'wine_id'],
            ascending=[False, False, True],
            kind='mergesort'
        ).head(limit)

        return [
            {
                'wine_id': int(row.wine_id),
                'avg_rating': float(row.avg_rating),
                'rating_count': int(row.rating_count),
            }
            for row in stats.itertuples(index=False)
        ]

    def get_stats(self) -> Dict[str, Any]:
        """Basic dataset statistics."""
        n_users = int(self._df['user_id'].nunique())
        n_wines = int(self._df['wine_id'].nunique())
        n = len(self._df)
        density = n / (n_users * n_wines) if n_users and n_wines else 0.0
        return {
            'num_ratings': n,
            'num_users': n_users,
            'num_wines': n_wines,
            'density': density,
            'avg_rating': float(self._df['rating'].mean()) if n else None,
        }

"""Shared pytest fixtures: rating stores, model directories, managers."""

import os
import sys

import pandas as pd
import pytest

# Ensure project root is on sys.path so that
# imports like `from recsys...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from recsys.cf.rating_store import DataFrameRatingStore  # noqa: E402
from recsys.cf.registry import ModelManager, ModelRegistry  # noqa: E402
from service.recommender import RecommendationEngine, RecommenderConfig  # noqa: E402


from tests.fakes import WINE_A, WINE_B, WINE_C  # noqa: E402


@pytest.fixture
def two_diner_store():
    """U {A:5, B:4}; V {A:4, B:5, C:4}."""
    return DataFrameRatingStore.from_records([
        {'user_id': 'U', 'wine_id': WINE_A, 'rating': 5},
        {'user_id': 'U', 'wine_id': WINE_B, 'rating': 4},
        {'user_id': 'V', 'wine_id': WINE_A, 'rating': 4},
        {'user_id': 'V', 'wine_id': WINE_B, 'rating': 5},
        {'user_id': 'V', 'wine_id': WINE_C, 'rating': 4},
    ])


@pytest.fixture
def cellar_frame():
    """Six diners, eight wines; wine 8 is popular but polarising."""
    rows = [
        ('alice', 1, 5), ('alice', 2, 4), ('alice', 3, 5), ('alice', 4, 2),
        ('bob', 1, 5), ('bob', 2, 5), ('bob', 3, 4), ('bob', 5, 5), ('bob', 6, 4),
        ('carol', 1, 4), ('carol', 3, 5), ('carol', 5, 4), ('carol', 7, 2),
        ('dave', 4, 5), ('dave', 7, 5), ('dave', 1, 1), ('dave', 8, 3),
        ('erin', 2, 4), ('erin', 6, 5), ('erin', 8, 5),
        ('frank', 8, 4), ('frank', 5, 5),
    ]
    return pd.DataFrame(rows, columns=['user_id', 'wine_id', 'rating'])


@pytest.fixture
def cellar_store(cellar_frame):
    return DataFrameRatingStore(cellar_frame)


@pytest.fixture
def model_dir(tmp_path):
    path = tmp_path / "models"
    path.mkdir()
    return path


@pytest.fixture
def registry():
    return ModelRegistry()


@pytest.fixture
def manager(model_dir, registry):
    return ModelManager(str(model_dir), registry=registry)


@pytest.fixture
def config():
    return RecommenderConfig()


@pytest.fixture
def make_engine(manager, config):
    def _make(store, **overrides):
        cfg = RecommenderConfig(**{**config.to_dict(), **overrides})
        return RecommendationEngine(store, model_manager=manager, config=cfg)
    return _make

"""Tests for RecommenderConfig and YAML config loading."""

import logging
import os

import pytest

from service.recommender import RecommenderConfig, load_config


def test_defaults():
    config = RecommenderConfig()

    assert config.limit == 10
    assert config.pearson_centering == 'midpoint'
    assert config.cold_start_threshold == 1
    assert config.use_baseline_model is True


def test_loads_recommender_section(tmp_path):
    path = tmp_path / "recommender.yaml"
    path.write_text(
        "recommender:\n"
        "  limit: 5\n"
        "  neighborhood_size: 7\n"
        "  pearson_centering: mean\n",
        encoding='utf-8'
    )

    config = load_config(str(path))

    assert config.limit == 5
    assert config.neighborhood_size == 7
    assert config.pearson_centering == 'mean'
    assert config.seed_count == RecommenderConfig().seed_count


def test_env_var_selects_file(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text("recommender:\n  seed_count: 2\n", encoding='utf-8')
    monkeypatch.setenv('RECOMMENDER_CONFIG', str(path))

    assert load_config().seed_count == 2


def test_missing_file_gives_defaults(tmp_path):
    assert load_config(str(tmp_path / "absent.yaml")) == RecommenderConfig()


def test_invalid_yaml_logged_and_defaults_used(tmp_path, caplog):
    path = tmp_path / "broken.yaml"
    path.write_text("recommender: [unclosed\n", encoding='utf-8')

    with caplog.at_level(logging.WARNING):
        config = load_config(str(path))

    assert config == RecommenderConfig()
    assert any("Failed to load config" in r.message for r in caplog.records)


def test_invalid_value_logged_and_defaults_used(tmp_path, caplog):
    path = tmp_path / "bad_value.yaml"
    path.write_text("recommender:\n  pearson_centering: median\n", encoding='utf-8')

    with caplog.at_level(logging.WARNING):
        config = load_config(str(path))

    assert config.pearson_centering == 'midpoint'
    assert caplog.records


def test_unknown_keys_ignored_with_warning(caplog):
    with caplog.at_level(logging.WARNING):
        config = RecommenderConfig.from_dict({'limit': 3, 'use_gpu': True})

    assert config.limit == 3
    assert any("use_gpu" in r.message for r in caplog.records)


def test_shipped_config_file_is_valid():
    path = os.path.join(os.path.dirname(__file__), '..', 'config', 'recommender_config.yaml')
    config = load_config(path)
    assert config.validate_checksum is True


@pytest.mark.parametrize('field, value', [
    ('pearson_centering', 'spearman'),
    ('confidence_shrinkage', 0),
    ('candidate_multiplier', 0),
    ('cold_start_threshold', -1),
])
def test_rejects_invalid_values(field, value):
    with pytest.raises(ValueError):
        RecommenderConfig(**{field: value})


def test_overrides_only_touch_tunable_fields():
    config = RecommenderConfig()

    tuned = config.with_overrides({'min_similarity': 0.4, 'limit': 99})

    assert tuned.min_similarity == 0.4
    assert tuned.limit == config.limit
    assert config.with_overrides({}) is config

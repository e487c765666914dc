"""Tests for pipeline configuration loading and validation."""

import pytest

from alsupdate.config import ALSConfig


def test_defaults():
    config = ALSConfig()

    assert config.iterations == 10
    assert config.implicit is True
    assert config.hyperparameter_ranges() == [[10], [0.001], [1.0]]
    assert config.no_known_items is False
    assert config.known_users is False
    assert config.test_fraction == 0.1


def test_from_dict_dotted_keys():
    config = ALSConfig.from_dict(
        {
            "als.iterations": "5",
            "als.implicit": "false",
            "als.hyperparams.features": "2,4",
            "als.hyperparams.lambda": [0.1, 1],
            "als.hyperparams.alpha": 40,
            "als.no-known-items": "true",
            "ml.eval.test-fraction": "0.25",
        }
    )

    assert config.iterations == 5
    assert config.implicit is False
    assert config.features == [2, 4]
    assert config.regularization == [0.1, 1.0]
    assert config.alpha == [40.0]
    assert config.no_known_items is True
    assert config.test_fraction == 0.25


def test_from_dict_field_names():
    config = ALSConfig.from_dict({"known-users": True, "num_partitions": 3})

    assert config.known_users is True
    assert config.num_partitions == 3


def test_from_dict_unknown_key():
    with pytest.raises(ValueError, match="Unknown configuration key"):
        ALSConfig.from_dict({"als.rank": 3})


def test_from_env():
    config = ALSConfig.from_env(
        environ={"ALS_FEATURES": "3,6", "ALS_IMPLICIT": "0", "OTHER": "x"}
    )

    assert config.features == [3, 6]
    assert config.implicit is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {"iterations": 0},
        {"test_fraction": 1.5},
        {"test_fraction": -0.1},
        {"num_partitions": 0},
        {"features": []},
    ],
)
def test_invalid_values(kwargs):
    with pytest.raises(ValueError):
        ALSConfig(**kwargs)

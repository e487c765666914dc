"""Tests for model persistence.

This module covers the descriptor format, the sharded factor files, atomic
saving and the error cases of loading damaged models.
"""

import gzip
import json
from pathlib import Path

import numpy as np
import pytest

from alsupdate.exceptions import CorruptModelError, ModelNotFoundError
from alsupdate.recommender.codec import (
    load_model,
    read_descriptor,
    read_features,
    save_model,
    write_features,
)
from alsupdate.recommender.model import FactorModel, HyperParams


@pytest.fixture
def random_model() -> FactorModel:
    rng = np.random.default_rng(0)
    return FactorModel(
        5,
        {user: rng.normal(size=5) for user in (3, 1, 2, -7)},
        {item: rng.normal(size=5) for item in range(100, 112)},
    )


def test_round_trip(random_model, tmp_path):
    save_model(random_model, HyperParams(5, 0.1, 2.0), True, tmp_path / "m")

    descriptor, loaded = load_model(tmp_path / "m")

    assert loaded.rank == 5
    assert loaded.user_ids() == random_model.user_ids()
    assert loaded.item_ids() == random_model.item_ids()
    for user in random_model.user_ids():
        np.testing.assert_allclose(
            loaded.user_factors[user], random_model.user_factors[user], rtol=0, atol=1e-9
        )
    for item in random_model.item_ids():
        np.testing.assert_allclose(
            loaded.item_factors[item], random_model.item_factors[item], rtol=0, atol=1e-9
        )
    assert descriptor.features == 5
    assert descriptor.alpha == 2.0


def test_descriptor_layout_implicit(random_model, tmp_path):
    save_model(random_model, HyperParams(5, 0.1, 2.0), True, tmp_path / "m")

    data = json.loads((tmp_path / "m" / "model.json").read_text())

    assert data["X"] == "X/"
    assert data["Y"] == "Y/"
    assert data["features"] == 5
    assert data["regularization"] == 0.1
    assert data["implicit"] is True
    assert data["alpha"] == 2.0
    assert data["XIDs"] == [-7, 1, 2, 3]
    assert data["YIDs"] == list(range(100, 112))


def test_descriptor_explicit_has_no_alpha(random_model, tmp_path):
    descriptor = save_model(random_model, HyperParams(5, 0.1, 2.0), False, tmp_path / "m")

    data = json.loads((tmp_path / "m" / "model.json").read_text())

    assert "alpha" not in data
    assert descriptor.alpha is None
    assert read_descriptor(tmp_path / "m").implicit is False


def test_partitioned_shards(random_model, tmp_path):
    save_model(random_model, HyperParams(5, 0.1, 1.0), True, tmp_path / "m", num_partitions=3)

    parts = sorted(p.name for p in (tmp_path / "m" / "Y").iterdir())
    assert parts == ["part-00000.gz", "part-00001.gz", "part-00002.gz"]

    _, loaded = load_model(tmp_path / "m")
    assert loaded.item_ids() == random_model.item_ids()


def test_shard_records_are_json_lines(tmp_path):
    write_features({2: np.array([0.5, 1.5]), 1: np.array([1.0, 2.0])}, tmp_path / "X")

    with gzip.open(tmp_path / "X" / "part-00000.gz", "rt") as handle:
        records = [json.loads(line) for line in handle]

    assert records == [[1, [1.0, 2.0]], [2, [0.5, 1.5]]]


def test_save_refuses_existing_path(random_model, tmp_path):
    (tmp_path / "m").mkdir()

    with pytest.raises(FileExistsError):
        save_model(random_model, HyperParams(5, 0.1, 1.0), True, tmp_path / "m")


def test_save_leaves_no_staging_directory(random_model, tmp_path):
    save_model(random_model, HyperParams(5, 0.1, 1.0), True, tmp_path / "m")

    assert [p.name for p in tmp_path.iterdir()] == ["m"]


def test_load_without_descriptor(tmp_path):
    with pytest.raises(ModelNotFoundError):
        load_model(tmp_path)


def test_load_with_invalid_descriptor(tmp_path):
    (tmp_path / "model.json").write_text("{not json")

    with pytest.raises(CorruptModelError):
        load_model(tmp_path)


def test_load_descriptor_missing_field(random_model, tmp_path):
    save_model(random_model, HyperParams(5, 0.1, 1.0), True, tmp_path / "m")
    descriptor_file = tmp_path / "m" / "model.json"
    data = json.loads(descriptor_file.read_text())
    del data["features"]
    descriptor_file.write_text(json.dumps(data))

    with pytest.raises(CorruptModelError, match="features"):
        load_model(tmp_path / "m")


def test_load_missing_shard(random_model, tmp_path):
    save_model(random_model, HyperParams(5, 0.1, 1.0), True, tmp_path / "m")
    for part in (tmp_path / "m" / "Y").iterdir():
        part.unlink()

    with pytest.raises(CorruptModelError, match="shard not found"):
        load_model(tmp_path / "m")


def test_load_ids_disagree_with_descriptor(random_model, tmp_path):
    save_model(random_model, HyperParams(5, 0.1, 1.0), True, tmp_path / "m")
    descriptor_file = tmp_path / "m" / "model.json"
    data = json.loads(descriptor_file.read_text())
    data["XIDs"] = data["XIDs"][1:]
    descriptor_file.write_text(json.dumps(data))

    with pytest.raises(CorruptModelError, match="XIDs"):
        load_model(tmp_path / "m")


def test_load_vector_length_disagrees_with_features(random_model, tmp_path):
    save_model(random_model, HyperParams(5, 0.1, 1.0), True, tmp_path / "m")
    descriptor_file = tmp_path / "m" / "model.json"
    data = json.loads(descriptor_file.read_text())
    data["features"] = 4
    descriptor_file.write_text(json.dumps(data))

    with pytest.raises(CorruptModelError, match="features=4"):
        load_model(tmp_path / "m")


def _write_part(shard: Path, lines):
    shard.mkdir(parents=True)
    with gzip.open(shard / "part-00000.gz", "wt") as handle:
        handle.write("\n".join(lines) + "\n")


@pytest.mark.parametrize(
    "lines, reason",
    [
        (["[1, [1.0, 2.0]]", "[2, [1.0]]"], "vector length"),
        (["[1, [1.0]]", "[1, [2.0]]"], "duplicate id"),
        (['[1, ["a"]]'], "list of numbers"),
        (["[1.5, [1.0]]"], "not an integer"),
        (["[1, [1.0], 3]"], "pair"),
        (["{oops"], "invalid JSON"),
    ],
)
def test_read_features_rejects_bad_records(tmp_path, lines, reason):
    _write_part(tmp_path / "X", lines)

    with pytest.raises(CorruptModelError, match=reason):
        read_features(tmp_path / "X")


def test_read_features_truncated_gzip(tmp_path):
    shard = tmp_path / "X"
    shard.mkdir()
    payload = gzip.compress(b"[1, [1.0]]\n" * 100)
    (shard / "part-00000.gz").write_bytes(payload[: len(payload) // 2])

    with pytest.raises(CorruptModelError, match="unreadable"):
        read_features(shard)


def test_read_features_damaged_deflate_stream(random_model, tmp_path):
    save_model(random_model, HyperParams(5, 0.1, 1.0), True, tmp_path / "m")
    part = tmp_path / "m" / "X" / "part-00000.gz"
    data = bytearray(part.read_bytes())
    for index in range(10, len(data) - 8):
        data[index] ^= 0xFF
    part.write_bytes(bytes(data))

    with pytest.raises(CorruptModelError):
        load_model(tmp_path / "m")


def test_read_features_invalid_utf8(tmp_path):
    shard = tmp_path / "X"
    shard.mkdir()
    (shard / "part-00000.gz").write_bytes(gzip.compress(b"[1, [1.0, \xff]]\n"))

    with pytest.raises(CorruptModelError, match="unreadable"):
        read_features(shard)


@pytest.mark.parametrize("features", [0, -2])
def test_load_descriptor_non_positive_features(tmp_path, features):
    for shard in ("X", "Y"):
        _write_part(tmp_path / shard, [])
    descriptor = {
        "X": "X/",
        "Y": "Y/",
        "features": features,
        "regularization": 0.1,
        "implicit": False,
        "XIDs": [],
        "YIDs": [],
    }
    (tmp_path / "model.json").write_text(json.dumps(descriptor))

    with pytest.raises(CorruptModelError, match="features must be positive"):
        load_model(tmp_path)


@pytest.mark.parametrize("value, expected", [(True, True), ("false", False), ("TRUE", True)])
def test_descriptor_implicit_flag_parsing(random_model, tmp_path, value, expected):
    save_model(random_model, HyperParams(5, 0.1, 1.0), True, tmp_path / "m")
    descriptor_file = tmp_path / "m" / "model.json"
    data = json.loads(descriptor_file.read_text())
    data["implicit"] = value
    descriptor_file.write_text(json.dumps(data))

    assert read_descriptor(tmp_path / "m").implicit is expected


@pytest.mark.parametrize("value", ["no", 1, None])
def test_descriptor_implicit_flag_rejects_non_booleans(random_model, tmp_path, value):
    save_model(random_model, HyperParams(5, 0.1, 1.0), True, tmp_path / "m")
    descriptor_file = tmp_path / "m" / "model.json"
    data = json.loads(descriptor_file.read_text())
    data["implicit"] = value
    descriptor_file.write_text(json.dumps(data))

    with pytest.raises(CorruptModelError, match="implicit must be a boolean"):
        read_descriptor(tmp_path / "m")

"""Tests for API error handling.

This module verifies that pipeline exceptions are mapped onto consistent
JSON error responses with the right status codes.
"""

import pytest
from fastapi.testclient import TestClient

from alsupdate.api.main import app
from alsupdate.api.routes import model as model_routes
from alsupdate.recommender.codec import save_model
from alsupdate.recommender.model import HyperParams

client = TestClient(app)


@pytest.fixture(autouse=True)
def serve_from(tmp_path, monkeypatch):
    """Point the service at an empty per-test model directory."""
    monkeypatch.setattr(model_routes, "DEFAULT_MODEL_DIR", str(tmp_path))
    model_routes.clear_model_cache()
    yield tmp_path
    model_routes.clear_model_cache()


@pytest.fixture
def model_dir(small_model, serve_from):
    save_model(small_model, HyperParams(2, 0.1, 1.0), False, serve_from / "1700000000000")
    return serve_from


def test_model_not_found_error():
    """Test 503 response when no generation exists."""
    response = client.get("/model/X/1")

    assert response.status_code == 503
    data = response.json()
    assert data["error"] == "ModelNotFoundError"
    assert "run an update" in data["message"]


def test_unknown_user(model_dir):
    response = client.get("/model/X/999")

    assert response.status_code == 404
    data = response.json()
    assert data["error"] == "EntityNotFoundError"
    assert data["details"] == {"role": "X", "id": 999}


def test_unknown_item(model_dir):
    response = client.get("/model/Y/1")

    assert response.status_code == 404


def test_invalid_role(model_dir):
    response = client.get("/model/Z/1")

    assert response.status_code == 422


def test_invalid_entity_id_type(model_dir):
    response = client.get("/model/X/abc")

    assert response.status_code == 422


def test_corrupt_model(serve_from):
    generation = serve_from / "1700000000000"
    generation.mkdir()
    (generation / "model.json").write_text("{broken")

    response = client.get("/model/X/1")

    assert response.status_code == 500
    assert response.json()["error"] == "CorruptModelError"


def test_corrupt_shard_bytes(model_dir):
    part = model_dir / "1700000000000" / "X" / "part-00000.gz"
    data = bytearray(part.read_bytes())
    for index in range(10, len(data) - 8):
        data[index] ^= 0xFF
    part.write_bytes(bytes(data))

    response = client.get("/model/X/1")

    assert response.status_code == 500
    assert response.json()["error"] == "CorruptModelError"


def test_error_response_structure():
    """Test that all error responses share the same envelope."""
    response = client.get("/model/Y/1")

    assert set(response.json()) == {"error", "message", "details"}


def test_status_endpoint_with_missing_model():
    """Test that /status still answers when there is no model."""
    response = client.get("/status")

    assert response.status_code == 200
    data = response.json()
    assert data["model_loaded"] is False
    assert data["generation"] is None
    assert data["num_users"] == 0
    assert "run an update" in data["error"]


def test_health_check_not_affected_by_model_errors():
    client.get("/model/X/1")

    response = client.get("/ping")

    assert response.status_code == 200


def test_reload_without_model():
    response = client.post("/model/reload")

    assert response.status_code == 503

"""
Tests for the model registry.
"""
import pytest
from pydantic import ValidationError

from errors import UnknownModelError
from models import ModelDescriptor
from registry import DEFAULT_MODEL_KEY, DEFAULT_MODELS, ModelRegistry, build_default_registry


def _descriptor(key, upstream_id="vendor/model", multimodal=False):
    return ModelDescriptor(key=key, upstream_id=upstream_id, display_name=key.upper(), multimodal=multimodal)


def test_every_registered_model_has_upstream_id():
    registry = build_default_registry()
    for key in registry.keys():
        descriptor = registry.lookup(key)
        assert descriptor is not None
        assert descriptor.upstream_id


def test_list_preserves_insertion_order():
    registry = build_default_registry()
    assert [d.key for d in registry.list_models()] == [d.key for d in DEFAULT_MODELS]
    assert registry.keys() == ["gemma-3-27b", "gemma-3-12b", "gemma-3-4b", "medgemma-3-4b"]


def test_default_key_is_registered():
    registry = build_default_registry()
    assert registry.default_key == DEFAULT_MODEL_KEY
    assert registry.default_key in registry


def test_lookup_unknown_key_returns_none():
    registry = build_default_registry()
    assert registry.lookup("does-not-exist") is None
    assert registry.lookup(None) is None
    assert registry.lookup(["gemma-3-4b"]) is None


def test_resolve_unknown_key_lists_available_models():
    registry = build_default_registry()
    with pytest.raises(UnknownModelError) as exc_info:
        registry.resolve("does-not-exist")

    error = exc_info.value
    assert error.status_code == 400
    assert error.to_payload() == {
        "error": "Invalid model selected",
        "availableModels": registry.keys(),
    }


def test_resolve_known_key():
    registry = build_default_registry()
    descriptor = registry.resolve("medgemma-3-4b")
    assert descriptor.upstream_id == "google/medgemma-4b-it"
    assert descriptor.display_name == "MedGemma 3 4B"


def test_custom_registry_is_substitutable():
    registry = ModelRegistry([_descriptor("a"), _descriptor("b")], default_key="b")
    assert len(registry) == 2
    assert registry.default_key == "b"
    assert registry.lookup("a").upstream_id == "vendor/model"


def test_duplicate_keys_rejected():
    with pytest.raises(ValueError):
        ModelRegistry([_descriptor("a"), _descriptor("a")], default_key="a")


def test_default_key_must_exist():
    with pytest.raises(ValueError):
        ModelRegistry([_descriptor("a")], default_key="missing")


def test_empty_upstream_id_rejected():
    with pytest.raises(ValueError):
        ModelRegistry([_descriptor("a", upstream_id="")], default_key="a")


def test_descriptors_are_immutable():
    descriptor = build_default_registry().lookup("gemma-3-4b")
    with pytest.raises(ValidationError):
        descriptor.multimodal = False

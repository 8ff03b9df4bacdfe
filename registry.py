"""
Model registry: the fixed table of models this service exposes.

The registry is built once at startup and handed to the app; it is never
mutated afterwards. Adding a model only means adding a descriptor to
DEFAULT_MODELS.
"""
import logging
from types import MappingProxyType
from typing import Any, Iterable, List, Optional, Tuple

from errors import UnknownModelError
from models import ModelDescriptor

logger = logging.getLogger(__name__)


DEFAULT_MODELS: Tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        key="gemma-3-27b",
        upstream_id="google/gemma-3-27b-it",
        display_name="Gemma 3 27B",
        description="Most capable Gemma 3 model - Maximum intelligence",
        multimodal=True,
        expected_latency_hint="~2-5 seconds",
    ),
    ModelDescriptor(
        key="gemma-3-12b",
        upstream_id="google/gemma-3-12b-it",
        display_name="Gemma 3 12B",
        description="Balanced performance and speed",
        multimodal=True,
        expected_latency_hint="~1-3 seconds",
    ),
    ModelDescriptor(
        key="gemma-3-4b",
        upstream_id="google/gemma-3-4b-it",
        display_name="Gemma 3 4B",
        description="Lightweight, fastest response",
        multimodal=True,
        expected_latency_hint="~1-2 seconds",
    ),
    ModelDescriptor(
        key="medgemma-3-4b",
        upstream_id="google/medgemma-4b-it",
        display_name="MedGemma 3 4B",
        description="Specialized for medical/healthcare questions",
        multimodal=True,
        expected_latency_hint="~1-2 seconds",
    ),
)

DEFAULT_MODEL_KEY = "gemma-3-4b"


class ModelRegistry:
    """Read-only, insertion-ordered mapping of model key -> ModelDescriptor."""

    def __init__(self, descriptors: Iterable[ModelDescriptor], default_key: str):
        models = {}
        for descriptor in descriptors:
            if descriptor.key in models:
                raise ValueError(f"Duplicate model key in registry: {descriptor.key}")
            if not descriptor.upstream_id:
                raise ValueError(f"Model '{descriptor.key}' has an empty upstream id")
            models[descriptor.key] = descriptor

        if default_key not in models:
            raise ValueError(f"Default model '{default_key}' is not registered")

        self._models = MappingProxyType(models)
        self._default_key = default_key

    def lookup(self, key: Any) -> Optional[ModelDescriptor]:
        """Returns the descriptor for `key`, or None if it is not registered."""
        if not isinstance(key, str):
            return None
        return self._models.get(key)

    def resolve(self, key: Any) -> ModelDescriptor:
        """Like lookup(), but raises UnknownModelError listing the valid keys."""
        descriptor = self.lookup(key)
        if descriptor is None:
            logger.warning(f"Model '{key}' not found. Available: {self.keys()}")
            raise UnknownModelError(key, self.keys())
        return descriptor

    def list_models(self) -> List[ModelDescriptor]:
        return list(self._models.values())

    def keys(self) -> List[str]:
        return list(self._models.keys())

    @property
    def default_key(self) -> str:
        return self._default_key

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key in self._models

    def __len__(self) -> int:
        return len(self._models)


def build_default_registry() -> ModelRegistry:
    """Builds the registry the service ships with."""
    return ModelRegistry(DEFAULT_MODELS, DEFAULT_MODEL_KEY)

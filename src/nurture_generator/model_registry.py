from dataclasses import dataclass
from typing import Sequence, Tuple


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    name: str
    context_length: int
    speed: str
    quality: str
    is_free: bool
    priority: int


# Lower priority value is preferred.
MODEL_REGISTRY: Tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="meta-llama/llama-3.2-3b-instruct:free",
        name="Llama 3.2 3B",
        context_length=8192,
        speed="fast",
        quality="high",
        is_free=True,
        priority=1,
    ),
    ModelDescriptor(
        id="microsoft/phi-3-mini-128k-instruct:free",
        name="Phi-3 Mini 128K",
        context_length=128000,
        speed="fast",
        quality="high",
        is_free=True,
        priority=2,
    ),
    ModelDescriptor(
        id="meta-llama/llama-3.1-8b-instruct:free",
        name="Llama 3.1 8B",
        context_length=8192,
        speed="medium",
        quality="high",
        is_free=True,
        priority=3,
    ),
    ModelDescriptor(
        id="openchat/openchat-7b:free",
        name="OpenChat 7B",
        context_length=8192,
        speed="fast",
        quality="medium",
        is_free=True,
        priority=4,
    ),
    ModelDescriptor(
        id="google/gemma-2-9b-it:free",
        name="Gemma 2 9B",
        context_length=8192,
        speed="medium",
        quality="high",
        is_free=True,
        priority=5,
    ),
)


def best_model(registry: Sequence[ModelDescriptor] = MODEL_REGISTRY) -> ModelDescriptor:
    if not registry:
        raise ValueError("Model registry is empty.")
    return _by_priority(registry)[0]


def fallback_model(registry: Sequence[ModelDescriptor] = MODEL_REGISTRY) -> ModelDescriptor:
    ordered = _by_priority(registry)
    if not ordered:
        raise ValueError("Model registry is empty.")
    return ordered[1] if len(ordered) > 1 else ordered[0]


def model_for_context(
    context_length: int, registry: Sequence[ModelDescriptor] = MODEL_REGISTRY
) -> ModelDescriptor:
    suitable = [model for model in registry if model.context_length >= context_length]
    if not suitable:
        return best_model(registry)
    return _by_priority(suitable)[0]


def _by_priority(models: Sequence[ModelDescriptor]) -> list:
    # sorted() copies, so the registry order is never touched.
    return sorted(models, key=lambda model: model.priority)

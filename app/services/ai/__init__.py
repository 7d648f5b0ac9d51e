"""
Generative AI backends behind one extraction contract.
"""

from app.services.ai.anthropic_backend import AnthropicBackend
from app.services.ai.base import AIBackend
from app.services.ai.openai_backend import OpenAIBackend

_BACKEND_CLASSES: dict[str, type[AIBackend]] = {
    OpenAIBackend.name: OpenAIBackend,
    AnthropicBackend.name: AnthropicBackend,
}

_backends: dict[str, AIBackend] = {}


def get_backend(name: str) -> AIBackend:
    """Shared backend instance for a provider name."""
    if name not in _BACKEND_CLASSES:
        raise ValueError(f"Unknown AI provider: {name}")
    if name not in _backends:
        _backends[name] = _BACKEND_CLASSES[name]()
    return _backends[name]


__all__ = ["AIBackend", "AnthropicBackend", "OpenAIBackend", "get_backend"]

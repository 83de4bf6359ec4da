"""Ollama text-generation clients."""

from osint_ai.ollama.base import (
    GenerationClient,
    OllamaCompletion,
    OllamaHealth,
    OllamaResponse,
    OllamaServiceError,
)
from osint_ai.ollama.client import (
    OllamaClient,
    RemoteOllamaClient,
    build_generation_client,
    check_health,
)

__all__ = [
    "GenerationClient",
    "OllamaClient",
    "OllamaCompletion",
    "OllamaHealth",
    "OllamaResponse",
    "OllamaServiceError",
    "RemoteOllamaClient",
    "build_generation_client",
    "check_health",
]

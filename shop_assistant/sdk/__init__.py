"""
Generation provider clients.

Provides the OpenAI-backed client and an offline mock provider.
"""

from .base import Completion, GenerationClient
from .mock_client import MockGenerationClient
from .openai_client import OpenAIGenerationClient

__all__ = ["Completion", "GenerationClient", "MockGenerationClient", "OpenAIGenerationClient"]

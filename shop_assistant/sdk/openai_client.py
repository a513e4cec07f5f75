"""
OpenAI generation client.

Wraps chat completions with a single bounded timeout and no automatic
retries, and translates SDK failures into the provider error taxonomy.
"""

import logging
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from ..core.errors import ProviderError, ProviderRateLimited, ProviderTimeout
from ..core.token_counter import TokenUsage
from .base import Completion

logger = logging.getLogger(__name__)


class OpenAIGenerationClient:
    """OpenAI chat completion client used by the session manager.
    
    The underlying SDK client is created with ``max_retries=0``: a failed
    call surfaces immediately so the caller can decide whether the turn
    is billable.
    """
    
    def __init__(
        self,
        model: str,
        max_completion_tokens: int = 500,
        temperature: Optional[float] = 0.7,
        client: Optional[Any] = None
    ):
        """Initialize the generation client.
        
        Args:
            model: OpenAI model name (required)
            max_completion_tokens: Upper bound on generated tokens per call
            temperature: Sampling temperature (optional)
            client: Pre-built SDK client; a new ``OpenAI`` client otherwise
            
        Raises:
            ValueError: If model is missing/empty or max_completion_tokens <= 0
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if max_completion_tokens <= 0:
            raise ValueError("max_completion_tokens must be > 0")
        
        self.model = model
        self.max_completion_tokens = max_completion_tokens
        self.temperature = temperature
        self.client = client if client is not None else OpenAI(max_retries=0)
    
    def complete(self, messages: List[Dict[str, str]], timeout: float) -> Completion:
        """Create a chat completion and return its text and usage.
        
        Args:
            messages: Chat messages, system prompt first (required)
            timeout: Seconds to wait for the provider
            
        Returns:
            Completion with reply text, token usage and request id
            
        Raises:
            ValueError: If messages is empty
            ProviderTimeout: If the call exceeded ``timeout``
            ProviderRateLimited: If the provider throttled the call
            ProviderError: On any other transport or response failure
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")
        
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_completion_tokens,
                timeout=timeout
            )
        except openai.APITimeoutError as exc:
            logger.warning("OpenAI call timed out after %ss", timeout)
            raise ProviderTimeout(f"Provider did not respond within {timeout}s") from exc
        except openai.RateLimitError as exc:
            logger.warning("OpenAI call rate limited: %s", exc)
            raise ProviderRateLimited(str(exc)) from exc
        except openai.OpenAIError as exc:
            logger.warning("OpenAI call failed: %s", exc)
            raise ProviderError(str(exc)) from exc
        
        # Extract usage information from response
        usage = response.usage
        if not usage:
            raise ProviderError("OpenAI response missing usage information")
        if not response.choices:
            raise ProviderError("OpenAI response contained no choices")
        
        text = response.choices[0].message.content or ""
        return Completion(
            text=text.strip(),
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens
            ),
            request_id=response.id
        )

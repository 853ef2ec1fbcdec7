"""LiteLLM client wrapper: completion, streaming, embeddings, key validation.

All text-generation and embedding calls route through this module so the
provider is interchangeable by ``provider/model`` string. Retries are NOT
done here: callers wrap these coroutines in their component's RetryPolicy.
"""

from __future__ import annotations

import math
import os
from collections.abc import AsyncIterator

import litellm

from repolens.errors import EmbeddingValidationError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


async def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 1024,
    temperature: float = 0.0,
    timeout: float | None = None,
) -> str:
    """Call litellm.acompletion() once. Returns the content string ('' if empty).

    Raises:
        litellm.exceptions.APIError: On any provider failure.
    """
    response = await litellm.acompletion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        timeout=timeout,
    )
    return response.choices[0].message.content or ""


async def stream(
    model: str,
    messages: list[dict],
    max_tokens: int = 2048,
    temperature: float = 0.2,
) -> AsyncIterator[str]:
    """Yield text deltas from a streaming litellm.acompletion() call."""
    response = await litellm.acompletion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        stream=True,
    )
    async for chunk in response:
        delta = chunk.choices[0].delta.content
        if delta:
            yield delta


async def embed(model: str, text: str) -> list[float]:
    """Call litellm.aembedding() for a single text. Returns the raw vector."""
    response = await litellm.aembedding(model=model, input=[text])
    return list(response.data[0]["embedding"])


def validate_embedding(vector: list[float], dimensions: int) -> list[float]:
    """Return *vector* unchanged if it has *dimensions* finite components.

    Raises:
        EmbeddingValidationError: On wrong length or any NaN/inf component.
    """
    if len(vector) != dimensions:
        raise EmbeddingValidationError(
            f"Expected a {dimensions}-dimensional embedding, got {len(vector)}"
        )
    if not all(math.isfinite(v) for v in vector):
        raise EmbeddingValidationError("Embedding contains non-finite values")
    return vector

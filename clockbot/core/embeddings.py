"""
ClockBot — Embedding Provider Abstraction.

Single public coroutine `embed()` that routes to the configured provider.
Provider is selected at first use via the EMBEDDING_PROVIDER env var.
Supports: local (sentence-transformers, default), openai, gemini, cohere.

Providers must be deterministic: the classifier caches vectors per text.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import numpy as np

logger = logging.getLogger(__name__)

# Type alias for provider implementations
_ProviderFn = Callable[[str, str, str], Awaitable[list[float]]]

# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------

# Lazy singleton so the local model is only loaded once.
_local_model = None


def _get_local_model(model_name: str):
    global _local_model
    if _local_model is None:
        from sentence_transformers import SentenceTransformer

        # SentenceTransformer accepts the short name directly.
        _local_model = SentenceTransformer(model_name.replace("sentence-transformers/", ""))
        logger.info("Loaded local embedding model %s", model_name)
    return _local_model


async def _embed_local(api_key: str, model: str, text: str) -> list[float]:
    def _encode() -> list[float]:
        vector = _get_local_model(model).encode(
            text, show_progress_bar=False, normalize_embeddings=True,
        )
        return np.asarray(vector, dtype=np.float32).tolist()

    # Model inference is CPU-bound; keep it off the event loop.
    return await asyncio.to_thread(_encode)


async def _embed_openai(api_key: str, model: str, text: str) -> list[float]:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.embeddings.create(model=model, input=text)
    return list(response.data[0].embedding)


async def _embed_gemini(api_key: str, model: str, text: str) -> list[float]:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    result = await asyncio.to_thread(
        genai.embed_content, model=model, content=text, task_type="clustering",
    )
    return list(result["embedding"])


async def _embed_cohere(api_key: str, model: str, text: str) -> list[float]:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.embed(
        model=model,
        texts=[text],
        input_type="clustering",
        embedding_types=["float"],
    )
    return list(response.embeddings.float_[0])


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "local":  (_embed_local,  "all-MiniLM-L6-v2"),
    "openai": (_embed_openai, "text-embedding-3-small"),
    "gemini": (_embed_gemini, "models/text-embedding-004"),
    "cohere": (_embed_cohere, "embed-english-v3.0"),
}


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read settings and return (provider_fn, model, api_key)."""
    from clockbot.config import settings

    provider_name = settings.EMBEDDING_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown EMBEDDING_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.EMBEDDING_MODEL or default_model
    api_key = settings.EMBEDDING_API_KEY

    logger.info("Embedding provider: %s, model: %s", provider_name, model)
    return fn, model, api_key


# Lazy singleton, populated on first call to embed()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def embed(text: str) -> list[float]:
    """Return the embedding vector for `text` from the configured provider.

    Raises on provider errors — callers should handle exceptions.
    """
    global _provider_fn, _model, _api_key

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    return await _provider_fn(_api_key, _model, text)

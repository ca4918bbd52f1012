"""
ClockBot — Recap Writer Backend.

The weekly recap is the only text an LLM writes in ClockBot. A `RecapLLM`
takes the plain-text recap facts and a system prompt and returns the post,
bounded by LLM_TIMEOUT_SECONDS. `RecapLLM.from_settings()` returns None
when LLM_PROVIDER is "none" or no key is set, and the caller posts the
plain-text recap without trying.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

_DISABLED = ("", "none")


@dataclass(frozen=True)
class RecapLLM:
    provider: str
    model: str
    api_key: str
    timeout: float = 30.0
    max_tokens: int = 512

    @classmethod
    def from_settings(cls) -> RecapLLM | None:
        """Build the configured writer, or None when recaps stay plain text.

        Raises ValueError for an unknown provider so a typo fails at start-up.
        """
        from clockbot.config import settings

        provider = settings.LLM_PROVIDER.strip().lower()
        if provider in _DISABLED or not settings.LLM_API_KEY:
            logger.info("Recap LLM disabled; recaps are posted as plain text")
            return None
        if provider not in _BACKENDS:
            raise ValueError(
                f"Unknown LLM_PROVIDER={provider!r}. "
                f"Supported: {', '.join(_BACKENDS)}, none"
            )

        _, default_model = _BACKENDS[provider]
        writer = cls(
            provider=provider,
            model=settings.LLM_MODEL or default_model,
            api_key=settings.LLM_API_KEY,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
        logger.info("Recap LLM: %s, model: %s", writer.provider, writer.model)
        return writer

    async def rewrite(self, system: str, facts: str) -> str:
        """Return the post written from `facts`, stripped ("" if the model said nothing).

        Raises asyncio.TimeoutError past the timeout, and whatever the
        provider SDK raises on API errors.
        """
        backend, _ = _BACKENDS[self.provider]
        text = await asyncio.wait_for(backend(self, system, facts), timeout=self.timeout)
        return (text or "").strip()


# ---------------------------------------------------------------------------
# Backends: (writer, system prompt, recap facts) -> post text
# ---------------------------------------------------------------------------


async def _write_gemini(llm: RecapLLM, system: str, facts: str) -> str:
    import google.generativeai as genai

    genai.configure(api_key=llm.api_key)
    model = genai.GenerativeModel(model_name=llm.model, system_instruction=system)
    response = await model.generate_content_async(
        facts,
        generation_config=genai.types.GenerationConfig(max_output_tokens=llm.max_tokens),
    )
    return response.text


async def _write_anthropic(llm: RecapLLM, system: str, facts: str) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=llm.api_key)
    message = await client.messages.create(
        model=llm.model,
        max_tokens=llm.max_tokens,
        system=system,
        messages=[{"role": "user", "content": facts}],
    )
    return "".join(block.text for block in message.content if block.type == "text")


async def _write_openai(llm: RecapLLM, system: str, facts: str) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=llm.api_key)
    completion = await client.chat.completions.create(
        model=llm.model,
        max_tokens=llm.max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": facts},
        ],
    )
    return completion.choices[0].message.content or ""


async def _write_cohere(llm: RecapLLM, system: str, facts: str) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=llm.api_key)
    reply = await client.chat(
        model=llm.model,
        max_tokens=llm.max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": facts},
        ],
    )
    return "".join(part.text for part in reply.message.content)


_Backend = Callable[[RecapLLM, str, str], Awaitable[str]]

_BACKENDS: dict[str, tuple[_Backend, str]] = {
    "gemini":    (_write_gemini,    "gemini-2.0-flash"),
    "anthropic": (_write_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_write_openai,    "gpt-4o-mini"),
    "cohere":    (_write_cohere,    "command-a-03-2025"),
}

"""Completion backends for kbchat."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol

import openai

from kbchat.config import Settings
from kbchat.errors import CompletionError
from kbchat.metrics.observability import get_logger

# Returned verbatim when the context cannot answer the question; clients match on it.
FALLBACK_ANSWER = "This information is not available in the current knowledge base"

EMPTY_COMPLETION_ANSWER = "Unable to generate a response."

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based ONLY on the provided context.\n"
    f'If the answer cannot be found in the context, respond with: "{FALLBACK_ANSWER}"\n'
    "Never make up information or use knowledge outside the provided context.\n"
    "Always cite the relevant parts of the context when answering."
)

_LOGGER = get_logger("generation")


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "gpt-4o-mini"
    temperature: float = 0.1
    max_tokens: int = 1000


class CompletionBackend(Protocol):
    """Produces an answer grounded in the supplied context."""

    async def complete(self, question: str, context: str) -> str:
        """Return the model's answer for ``question`` given ``context``."""


def build_messages(question: str, context: str) -> List[dict[str, str]]:
    user_prompt = (
        f"Context:\n{context}\n\n"
        f"Question: {question}\n\n"
        "Please answer the question based ONLY on the context provided above."
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


class TemplateGenerator:
    """Deterministic generator used for tests and offline environments."""

    async def complete(self, question: str, context: str) -> str:
        if not context.strip():
            return FALLBACK_ANSWER
        first_block = context.split("\n\n---\n\n", 1)[0]
        return f"Based on the knowledge base: {first_block}"


class OpenAICompletionBackend:
    """Chat-completion backend for OpenAI-compatible APIs."""

    provider_name = "openai"

    def __init__(
        self,
        config: GenerationConfig | None = None,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._config = config or GenerationConfig()
        if client is None:
            client_kwargs: dict[str, str] = {}
            if api_key:
                client_kwargs["api_key"] = api_key
            if base_url:
                client_kwargs["base_url"] = base_url
            client = openai.AsyncOpenAI(**client_kwargs)
        self._client = client

    async def complete(self, question: str, context: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
                messages=build_messages(question, context),
            )
        except openai.OpenAIError as exc:
            raise CompletionError(f"Completion request failed: {exc}", provider_name=self.provider_name) from exc
        usage = getattr(response, "usage", None)
        _LOGGER.info(
            "generation.usage",
            model=self._config.model,
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
        )
        content = response.choices[0].message.content if response.choices else None
        return content or EMPTY_COMPLETION_ANSWER


def build_completion_backend(settings: Settings) -> CompletionBackend:
    """Instantiate the backend selected by ``settings.completion_provider``."""

    if settings.completion_provider == "openai":
        config = GenerationConfig(
            model=settings.completion_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )
        return OpenAICompletionBackend(config, api_key=settings.openai_api_key, base_url=settings.openai_base_url)
    _LOGGER.info("generation.template_mode")
    return TemplateGenerator()

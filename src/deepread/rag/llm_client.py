"""Provider-agnostic completion interface, backed by LiteLLM.

Every model call in the query, analysis and map-reduce paths goes through a
``CompletionProvider``. ``LiteLLMProvider`` is the production implementation;
tests substitute a fake. API key presence is validated before the provider is
handed out, so a missing key fails before any work begins.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import litellm

if TYPE_CHECKING:
    from deepread.config import DeepreadConfig

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "google": "GOOGLE_API_KEY",
    "gemini": "GEMINI_API_KEY",
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
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Interface
# ------------------------------------------------------------------


@dataclass
class Completion:
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class StreamEvent:
    """One event of a streamed completion: a token, the end, or an error."""

    type: Literal["token", "done", "error"]
    text: str = ""
    message: str = ""


class CompletionProvider(ABC):
    """A language-model completion service."""

    model: str

    @abstractmethod
    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> Completion:
        """Return one non-streaming completion. Raises on provider failure."""

    @abstractmethod
    def stream_complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamEvent]:
        """Yield token events, then exactly one ``done`` or ``error`` event."""


# ------------------------------------------------------------------
# LiteLLM implementation
# ------------------------------------------------------------------


class LiteLLMProvider(CompletionProvider):
    """Completion provider calling ``litellm.acompletion()``.

    Args:
        model: LiteLLM model string (provider/model format).
        temperature: Sampling temperature (0 = deterministic).
        num_retries: LiteLLM transport retries on transient errors.
    """

    def __init__(self, model: str, temperature: float = 0.0, num_retries: int = 0) -> None:
        self.model = model
        self.temperature = temperature
        self.num_retries = num_retries

    def _messages(self, system: str, user: str) -> list[dict]:
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> Completion:
        kwargs: dict = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await litellm.acompletion(
            model=self.model,
            messages=self._messages(system, user),
            max_tokens=max_tokens,
            temperature=self.temperature,
            num_retries=self.num_retries,
            **kwargs,
        )
        usage = getattr(response, "usage", None)
        return Completion(
            text=response.choices[0].message.content or "",
            model=getattr(response, "model", None) or self.model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )

    async def stream_complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamEvent]:
        try:
            response = await litellm.acompletion(
                model=self.model,
                messages=self._messages(system, user),
                max_tokens=max_tokens,
                temperature=self.temperature,
                stream=True,
            )
            async for part in response:
                delta = part.choices[0].delta.content if part.choices else None
                if delta:
                    yield StreamEvent(type="token", text=delta)
        except Exception as exc:
            logger.warning("Streaming completion failed: %s", exc)
            yield StreamEvent(type="error", message=str(exc) or "AI service unavailable")
            return
        yield StreamEvent(type="done")


def get_provider(config: DeepreadConfig, validate: bool = True) -> CompletionProvider:
    """Create the configured completion provider.

    Raises:
        EnvironmentError: If *validate* and the model's API key is missing.
    """
    if validate:
        validate_api_key(config.llm.model)
    return LiteLLMProvider(model=config.llm.model, temperature=config.llm.temperature)

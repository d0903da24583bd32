"""LiteLLM wrappers for chat completion and image generation.

Every LLM and image call made by the generation pipeline goes through this
module. Provider failures are re-raised as ProviderError; responses carry the
token usage needed for cost accounting.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any

import litellm

from quillstream.core.errors import ConfigurationError, ProviderError
from quillstream.domain.models.cost import TokenUsage

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "ollama": None,
    "ollama_chat": None,
}

_JSON_FENCE = re.compile(r"```(?:json)?\n?")


def validate_api_key(model: str) -> None:
    """Raise ConfigurationError when the provider key for *model* is not set."""
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)
    if env_var is None:
        return
    if not os.getenv(env_var):
        raise ConfigurationError(
            f"API key not found for provider '{provider}'. Set the {env_var} environment variable."
        )


def strip_json_fences(content: str) -> str:
    return _JSON_FENCE.sub("", content).strip()


@dataclass(slots=True)
class Completion:
    content: str
    usage: TokenUsage
    model: str

    def parse_json(self) -> dict[str, Any]:
        try:
            parsed = json.loads(strip_json_fences(self.content))
        except json.JSONDecodeError as exc:
            raise ProviderError(f"Model {self.model} returned invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ProviderError(f"Model {self.model} returned JSON that is not an object.")
        return parsed


@dataclass(slots=True)
class GeneratedImage:
    url: str
    model: str
    size: str
    quality: str


class LiteLLMClient:
    def __init__(self, *, model: str, num_retries: int = 2, timeout: float | None = None) -> None:
        self.model = model
        self.num_retries = num_retries
        self.timeout = timeout

    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "num_retries": self.num_retries,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = litellm.completion(**kwargs)
        except Exception as exc:
            raise ProviderError(f"Completion request failed ({self.model}): {exc}") from exc

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError, KeyError, TypeError) as exc:
            raise ProviderError(f"Completion response from {self.model} is malformed.") from exc
        if not content.strip():
            raise ProviderError(f"Completion from {self.model} was empty.")

        usage = getattr(response, "usage", None)
        return Completion(
            content=content,
            usage=TokenUsage(
                input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
                output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
            ),
            model=str(getattr(response, "model", None) or self.model),
        )


class LiteLLMImageClient:
    def __init__(
        self,
        *,
        model: str = "dall-e-3",
        size: str = "1024x1024",
        quality: str = "standard",
        timeout: float | None = None,
    ) -> None:
        self.model = model
        self.size = size
        self.quality = quality
        self.timeout = timeout

    def generate(self, prompt: str) -> GeneratedImage:
        try:
            response = litellm.image_generation(
                model=self.model,
                prompt=prompt,
                n=1,
                size=self.size,
                quality=self.quality,
                timeout=self.timeout,
            )
        except Exception as exc:
            raise ProviderError(f"Image generation failed ({self.model}): {exc}") from exc

        data = getattr(response, "data", None) or []
        first = data[0] if data else None
        url = first.get("url") if isinstance(first, dict) else getattr(first, "url", None)
        if not url:
            raise ProviderError(f"Image provider {self.model} returned no image URL.")
        return GeneratedImage(url=str(url), model=self.model, size=self.size, quality=self.quality)

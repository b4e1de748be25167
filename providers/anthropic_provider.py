"""Anthropic Claude provider (completion only)."""
from typing import Optional

import anthropic

from providers.base import AIProvider, ProviderError, ProviderConfigError, TransientProviderError
from providers.settings import AISettings, model_for_provider
import config


class AnthropicProvider(AIProvider):
    provider_id = "anthropic"

    def __init__(self, settings: AISettings):
        super().__init__(settings)
        if not settings.anthropic_api_key:
            raise ProviderConfigError("Anthropic API key is missing")
        self.client = anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=config.LLM_TIMEOUT_SECONDS,
            max_retries=0
        )

    @property
    def model_name(self) -> str:
        return model_for_provider(self.settings)

    async def _complete(self, prompt: str, system: Optional[str]) -> str:
        kwargs = {
            "model": self.model_name,
            "max_tokens": config.LLM_MAX_TOKENS,
            "temperature": config.LLM_TEMPERATURE,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self.client.messages.create(**kwargs)
        except (anthropic.RateLimitError, anthropic.APIConnectionError) as e:
            raise TransientProviderError(f"Anthropic request failed: {e}") from e
        except anthropic.APIStatusError as e:
            if e.status_code >= 500 or e.status_code == 429:
                raise TransientProviderError(f"Anthropic returned {e.status_code}: {e}") from e
            raise ProviderError(f"Anthropic returned {e.status_code}: {e}") from e

        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )

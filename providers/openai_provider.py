"""OpenAI and OpenAI-compatible providers."""
from typing import List, Optional

import openai

from providers.base import AIProvider, ProviderError, ProviderConfigError, TransientProviderError
from providers.settings import AISettings, model_for_provider
import config


def _translate_error(e: Exception, label: str) -> ProviderError:
    if isinstance(e, (openai.RateLimitError, openai.APIConnectionError)):
        return TransientProviderError(f"{label} request failed: {e}")
    if isinstance(e, openai.APIStatusError):
        if e.status_code >= 500 or e.status_code == 429:
            return TransientProviderError(f"{label} returned {e.status_code}: {e}")
        return ProviderError(f"{label} returned {e.status_code}: {e}")
    return ProviderError(f"{label} request failed: {e}")


class OpenAIProvider(AIProvider):
    """Chat completions plus the embeddings endpoint."""
    provider_id = "openai"

    def __init__(self, settings: AISettings):
        super().__init__(settings)
        if not settings.openai_api_key:
            raise ProviderConfigError("OpenAI API key is missing")
        self.client = openai.AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=config.LLM_TIMEOUT_SECONDS,
            max_retries=0
        )

    @property
    def model_name(self) -> str:
        return model_for_provider(self.settings)

    @property
    def embedding_model_name(self) -> Optional[str]:
        return self.settings.openai_embedding_model

    def supports_embeddings(self) -> bool:
        return True

    async def _complete(self, prompt: str, system: Optional[str]) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                temperature=config.LLM_TEMPERATURE,
                max_tokens=config.LLM_MAX_TOKENS
            )
        except openai.OpenAIError as e:
            raise _translate_error(e, self.provider_id) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        try:
            response = await self.client.embeddings.create(
                model=self.embedding_model_name,
                input=texts,
                timeout=config.EMBEDDING_TIMEOUT_SECONDS
            )
        except openai.OpenAIError as e:
            raise _translate_error(e, f"{self.provider_id} embeddings") from e

        # The API may return items out of order
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


class OpenAICompatibleProvider(OpenAIProvider):
    """Any server speaking the chat completions protocol. No embeddings."""
    provider_id = "openai-compatible"

    def __init__(self, settings: AISettings):
        AIProvider.__init__(self, settings)
        if not settings.openai_compatible_base_url:
            raise ProviderConfigError("OpenAI Compatible endpoint URL is not configured")
        if not settings.openai_compatible_model:
            raise ProviderConfigError("OpenAI Compatible model is not specified")
        self.client = openai.AsyncOpenAI(
            api_key=settings.openai_compatible_api_key or "not-needed",
            base_url=settings.openai_compatible_base_url,
            timeout=config.LLM_TIMEOUT_SECONDS,
            max_retries=0
        )

    @property
    def embedding_model_name(self) -> Optional[str]:
        return None

    def supports_embeddings(self) -> bool:
        return False

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        raise ProviderError(f"{self.provider_id} does not support embeddings")

"""Local Ollama server provider over its HTTP API."""
from typing import List, Optional

import httpx

from providers.base import AIProvider, ProviderError, ProviderConfigError, TransientProviderError
from providers.settings import AISettings, model_for_provider
import config


class OllamaProvider(AIProvider):
    provider_id = "ollama"

    def __init__(self, settings: AISettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(settings)
        if not settings.ollama_base_url:
            raise ProviderConfigError("Ollama server URL is not configured")
        self.base_url = settings.ollama_base_url.rstrip("/")
        self.transport = transport

    @property
    def model_name(self) -> str:
        return model_for_provider(self.settings)

    @property
    def embedding_model_name(self) -> Optional[str]:
        return self.settings.ollama_embedding_model

    def supports_embeddings(self) -> bool:
        return True

    async def _post(self, path: str, payload: dict, timeout: float) -> dict:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=timeout,
                transport=self.transport
            ) as client:
                response = await client.post(path, json=payload)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransientProviderError(f"Ollama request to {path} failed: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientProviderError(f"Ollama returned {response.status_code}: {response.text}")
        if response.status_code >= 400:
            raise ProviderError(f"Ollama returned {response.status_code}: {response.text}")

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Ollama returned invalid JSON from {path}") from e

    async def _complete(self, prompt: str, system: Optional[str]) -> str:
        payload = {
            "model": self.model_name,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": config.LLM_TEMPERATURE},
        }
        if system:
            payload["system"] = system
        data = await self._post("/api/generate", payload, config.LLM_TIMEOUT_SECONDS)
        return data.get("response", "")

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        data = await self._post(
            "/api/embed",
            {"model": self.embedding_model_name, "input": texts},
            config.EMBEDDING_TIMEOUT_SECONDS
        )
        embeddings = data.get("embeddings")
        if not isinstance(embeddings, list):
            raise ProviderError("Ollama embed response has no embeddings")
        return embeddings

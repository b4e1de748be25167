"""Select the provider implementation for the configured vendor."""
from typing import Optional

from providers.base import AIProvider, ProviderConfigError
from providers.settings import AISettings, config_error
from providers.anthropic_provider import AnthropicProvider
from providers.openai_provider import OpenAIProvider, OpenAICompatibleProvider
from providers.ollama_provider import OllamaProvider

PROVIDERS = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "openai-compatible": OpenAICompatibleProvider,
    "ollama": OllamaProvider,
}


def get_provider(settings: Optional[AISettings] = None) -> AIProvider:
    """Build the provider for ``settings.provider``.

    Raises:
        ProviderConfigError: If the settings are incomplete or name an unknown vendor
    """
    settings = settings or AISettings()
    problem = config_error(settings)
    if problem:
        raise ProviderConfigError(problem)

    provider_cls = PROVIDERS.get(settings.provider)
    if provider_cls is None:
        raise ProviderConfigError(f"Unknown AI provider: {settings.provider}")
    return provider_cls(settings)

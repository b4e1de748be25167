"""Provider settings and validation."""
from pydantic import BaseModel
from typing import List, Literal, Optional

import config

ProviderName = Literal["ollama", "openai", "anthropic", "openai-compatible"]
AIFeature = Literal["xray", "chat"]

PROVIDER_LABELS = {
    "ollama": "Ollama",
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "openai-compatible": "OpenAI Compatible",
}


class AISettings(BaseModel):
    """Per-call provider configuration, defaulting to environment config."""
    provider: ProviderName = config.AI_PROVIDER

    ollama_base_url: str = config.OLLAMA_BASE_URL
    ollama_model: str = config.OLLAMA_MODEL
    ollama_embedding_model: str = config.OLLAMA_EMBEDDING_MODEL

    openai_api_key: Optional[str] = config.OPENAI_API_KEY
    openai_model: str = config.OPENAI_MODEL
    openai_embedding_model: str = config.OPENAI_EMBEDDING_MODEL

    anthropic_api_key: Optional[str] = config.ANTHROPIC_API_KEY
    anthropic_model: str = config.ANTHROPIC_MODEL

    openai_compatible_api_key: Optional[str] = config.OPENAI_COMPATIBLE_API_KEY
    openai_compatible_base_url: str = config.OPENAI_COMPATIBLE_BASE_URL
    openai_compatible_model: str = config.OPENAI_COMPATIBLE_MODEL

    # Per-feature model overrides (empty string = use main model)
    per_feature_models: bool = False
    xray_model_override: str = ""
    chat_model_override: str = ""


class ConfigIssue(BaseModel):
    field: str
    message: str


def validate_settings(settings: AISettings) -> List[ConfigIssue]:
    """Check the active provider has everything it needs.

    Returns:
        List of issues, empty when the configuration is usable
    """
    issues = []
    label = PROVIDER_LABELS.get(settings.provider, settings.provider)

    if settings.provider == "ollama":
        if not settings.ollama_base_url:
            issues.append(ConfigIssue(field="ollama_base_url", message=f"{label} server URL is not configured"))
        if not settings.ollama_model:
            issues.append(ConfigIssue(field="ollama_model", message=f"{label} model is not selected"))
    elif settings.provider == "openai":
        if not settings.openai_api_key:
            issues.append(ConfigIssue(field="openai_api_key", message=f"{label} API key is missing"))
    elif settings.provider == "anthropic":
        if not settings.anthropic_api_key:
            issues.append(ConfigIssue(field="anthropic_api_key", message=f"{label} API key is missing"))
    elif settings.provider == "openai-compatible":
        if not settings.openai_compatible_api_key:
            issues.append(ConfigIssue(field="openai_compatible_api_key", message=f"{label} API key is missing"))
        if not settings.openai_compatible_base_url:
            issues.append(ConfigIssue(field="openai_compatible_base_url", message=f"{label} endpoint URL is not configured"))
        if not settings.openai_compatible_model:
            issues.append(ConfigIssue(field="openai_compatible_model", message=f"{label} model is not specified"))

    return issues


def config_error(settings: AISettings) -> Optional[str]:
    """Single human-readable message for an invalid configuration, else None."""
    issues = validate_settings(settings)
    if not issues:
        return None
    return ". ".join(issue.message for issue in issues)


def model_for_provider(settings: AISettings) -> str:
    if settings.provider == "ollama":
        return settings.ollama_model or "llama3.2"
    if settings.provider == "openai":
        return settings.openai_model or "gpt-4.1-nano"
    if settings.provider == "anthropic":
        return settings.anthropic_model or "claude-sonnet-4-5-20250929"
    return settings.openai_compatible_model


def settings_for_feature(settings: AISettings, feature: AIFeature) -> AISettings:
    """Apply a per-feature model override to the active provider's model."""
    if not settings.per_feature_models:
        return settings
    override = settings.xray_model_override if feature == "xray" else settings.chat_model_override
    if not override:
        return settings

    field = {
        "ollama": "ollama_model",
        "openai": "openai_model",
        "anthropic": "anthropic_model",
        "openai-compatible": "openai_compatible_model",
    }[settings.provider]
    return settings.model_copy(update={field: override})

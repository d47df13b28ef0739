"""Model provider registry - which API key each model provider needs."""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelProvider:
    """Metadata for one model provider. No secrets, only where to find them."""

    name: str
    display_name: str
    env_var: str
    key_prefix: str = ""

    @property
    def config_key(self) -> str:
        """Manifest secret key, e.g. anthropicApiKey."""
        return f"{self.name}ApiKey"


MODEL_PROVIDERS: Dict[str, ModelProvider] = {
    "anthropic": ModelProvider(
        name="anthropic",
        display_name="Anthropic",
        env_var="ANTHROPIC_API_KEY",
        key_prefix="sk-ant-",
    ),
    "openai": ModelProvider(
        name="openai",
        display_name="OpenAI",
        env_var="OPENAI_API_KEY",
        key_prefix="sk-",
    ),
    "google": ModelProvider(
        name="google",
        display_name="Google",
        env_var="GOOGLE_API_KEY",
    ),
    "openrouter": ModelProvider(
        name="openrouter",
        display_name="OpenRouter",
        env_var="OPENROUTER_API_KEY",
        key_prefix="sk-or-",
    ),
}


def provider_of(model: str) -> str:
    """Provider part of a model string: 'anthropic/claude-opus-4-6' -> 'anthropic'."""
    return model.split("/", 1)[0].strip().lower()


def get_required_providers(models: Iterable[str]) -> List[str]:
    """Providers actually used by the given models, in registry order.

    Unknown providers are skipped with a warning.
    """
    used = set()
    for model in models:
        if not model:
            continue
        provider = provider_of(model)
        if provider not in MODEL_PROVIDERS:
            logger.warning(f"Unknown model provider '{provider}' (model '{model}'), no API key required")
            continue
        used.add(provider)
    return [name for name in MODEL_PROVIDERS if name in used]

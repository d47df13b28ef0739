"""Tests for the model provider registry."""

from fleet.services.env_service import VALIDATORS
from fleet.services.model_providers import MODEL_PROVIDERS, get_required_providers, provider_of


class TestModelProviders:
    """Tests for provider lookup."""

    def test_provider_of(self):
        assert provider_of("anthropic/claude-opus-4-6") == "anthropic"
        assert provider_of("openrouter/meta/llama") == "openrouter"

    def test_only_used_providers_in_registry_order(self):
        models = ["openai/gpt-5", "anthropic/claude-opus-4-6", "openai/gpt-5-mini"]
        assert get_required_providers(models) == ["anthropic", "openai"]

    def test_unknown_provider_skipped(self):
        assert get_required_providers(["mystery/model", ""]) == []

    def test_config_key_and_prefix_validators(self):
        anthropic = MODEL_PROVIDERS["anthropic"]
        assert anthropic.config_key == "anthropicApiKey"
        assert VALIDATORS["anthropicApiKey"].check("sk-ant-123") is None
        assert VALIDATORS["anthropicApiKey"].check("sk-123") == "Must start with sk-ant-"
        assert "googleApiKey" not in VALIDATORS

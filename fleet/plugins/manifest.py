"""Plugin manifest model - describes a plugin's secrets, config and hooks."""

import json
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SecretInstructions(_CamelModel):
    title: str
    steps: List[str] = Field(default_factory=list)

    def render(self) -> str:
        return "\n".join([self.title, *self.steps])


class PluginSecret(_CamelModel):
    """One secret a plugin needs."""

    env_var: str = Field(..., description="Bare env var name, e.g. SLACK_BOT_TOKEN")
    scope: Literal["agent", "global"] = "agent"
    is_secret: bool = True
    required: bool = True
    auto_resolvable: bool = False
    validator: Optional[str] = Field(default=None, description="Required value prefix")
    instructions: Optional[SecretInstructions] = None


class OnboardInput(_CamelModel):
    env_var: str
    prompt: str
    validator: Optional[str] = None
    instructions: Optional[str] = None


class OnboardHook(_CamelModel):
    description: str
    run_once: bool = False
    inputs: Dict[str, OnboardInput] = Field(default_factory=dict)
    script: str


class PluginHooks(_CamelModel):
    # secret key -> shell script whose trimmed stdout is the value
    resolve: Optional[Dict[str, str]] = None
    onboard: Optional[OnboardHook] = None


class ConfigTransform(_CamelModel):
    source_key: str
    target_keys: Dict[str, str]
    remove_source: bool = True


class WebhookSetup(_CamelModel):
    url_path: str
    secret_key: str
    instructions: List[str] = Field(default_factory=list)
    config_json_path: Optional[str] = None


class PluginManifest(_CamelModel):
    """Plugin capability descriptor."""

    name: str = Field(..., min_length=1, description="Plugin name as listed by identities")
    display_name: str = ""
    installable: bool = True
    needs_funnel: bool = False
    config_path: Literal["plugins.entries", "channels"] = "plugins.entries"
    secrets: Dict[str, PluginSecret] = Field(default_factory=dict)
    internal_keys: List[str] = Field(default_factory=list)
    default_config: Optional[Dict[str, Any]] = None
    config_transforms: List[ConfigTransform] = Field(default_factory=list)
    webhook_setup: Optional[WebhookSetup] = None
    hooks: Optional[PluginHooks] = None

    @model_validator(mode="after")
    def _check_secret_references(self):
        if self.webhook_setup and self.webhook_setup.secret_key not in self.secrets:
            raise ValueError(
                f"webhookSetup.secretKey '{self.webhook_setup.secret_key}' is not a declared secret"
            )
        if self.hooks and self.hooks.resolve:
            for key in self.hooks.resolve:
                if key not in self.secrets:
                    raise ValueError(f"Resolve hook key '{key}' is not a declared secret")
        return self

    @property
    def required_secrets(self) -> Dict[str, PluginSecret]:
        return {k: s for k, s in self.secrets.items() if s.required}

    @property
    def resolve_hooks(self) -> Dict[str, str]:
        return dict(self.hooks.resolve) if self.hooks and self.hooks.resolve else {}

    @property
    def onboard_hook(self) -> Optional[OnboardHook]:
        return self.hooks.onboard if self.hooks else None


def parse_plugin_manifest(content: str, suffix: str) -> PluginManifest:
    """Parse plugin manifest text (JSON for ``.json``, YAML otherwise).

    Raises:
        ValueError: unparseable content or a manifest that fails validation
    """
    try:
        data = json.loads(content) if suffix == ".json" else yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("manifest must be a mapping")
    return PluginManifest.model_validate(data)

"""Secret requirement schema builder.

Derives every secret a fleet needs, global and per agent, from the deployment
provider, the models in use, and the plugins, deps and ad-hoc secrets each
agent's identity declares. The result maps secret keys to ``${env:VAR}``
reference strings and is a pure function of its inputs: it is rebuilt on every
setup/repair pass so newly added plugins are picked up without a reset.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from fleet.models.manifest import ResolvedAgent
from fleet.plugins.deps import DEP_REGISTRY, resolve_dep
from fleet.plugins.manifest import PluginManifest, PluginSecret
from fleet.plugins.registry import PluginRegistry
from fleet.services.env_service import (
    VALIDATORS,
    Validator,
    agent_env_var_name,
    camel_to_screaming_snake,
    env_ref,
    env_var_to_camel,
)
from fleet.services.model_providers import MODEL_PROVIDERS, get_required_providers

logger = logging.getLogger(__name__)

# Transport (mesh network) secrets for every non-local deployment:
# (key, env var, required, isSecret)
TRANSPORT_SECRETS = [
    ("tailscaleAuthKey", "TAILSCALE_AUTH_KEY", True, True),
    ("tailnetDnsName", "TAILNET_DNS_NAME", True, False),
    ("tailscaleApiKey", "TAILSCALE_API_KEY", False, True),
]

# Cloud credentials, only for the provider that needs them
PROVIDER_SECRETS = {
    "hetzner": [("hcloudToken", "HCLOUD_TOKEN")],
}


@dataclass(frozen=True)
class SecretRequirement:
    """One secret the fleet needs. Rebuilt on every pass, never persisted."""

    key: str
    env_var: str
    scope: str  # "global" | "agent"
    agent: Optional[str] = None
    is_secret: bool = True
    required: bool = True
    auto_resolvable: bool = False
    source: str = ""
    hint: str = ""

    @property
    def deferred(self) -> bool:
        """True when a missing value must not be demanded from the operator."""
        return self.auto_resolvable or not self.required


@dataclass
class SecretSchema:
    """Reference-string templates for every required secret."""

    global_refs: Dict[str, str] = field(default_factory=dict)
    per_agent: Dict[str, Dict[str, str]] = field(default_factory=dict)
    requirements: List[SecretRequirement] = field(default_factory=list)
    managed_global_keys: List[str] = field(default_factory=list)
    validators: Dict[str, Validator] = field(default_factory=dict)

    def requirement(self, key: str, agent: Optional[str] = None) -> Optional[SecretRequirement]:
        for req in self.requirements:
            if req.key == key and req.agent == agent:
                return req
        return None

    def merge_global(self, existing: Optional[Mapping[str, str]], prune: bool = True) -> Dict[str, str]:
        """Merge with the manifest's current global secrets.

        Engine-managed keys that are no longer needed are pruned (unless
        ``prune`` is off), keys the operator added by hand are kept, and
        existing references win over freshly derived ones.
        """
        managed = set(self.managed_global_keys) if prune else set()
        merged = {
            key: ref
            for key, ref in (existing or {}).items()
            if key not in managed or key in self.global_refs
        }
        for key, ref in self.global_refs.items():
            merged.setdefault(key, ref)
        return merged

    def merge_agent(self, agent: str, existing: Optional[Mapping[str, str]]) -> Dict[str, str]:
        """Merge an agent's current secrets with the derived ones (existing win)."""
        merged = dict(existing or {})
        for key, ref in self.per_agent.get(agent, {}).items():
            merged.setdefault(key, ref)
        return merged


class _SchemaBuilder:
    def __init__(self, registry: PluginRegistry):
        self.registry = registry
        self.global_refs: Dict[str, str] = {}
        self.per_agent: Dict[str, Dict[str, str]] = {}
        self.requirements: Dict[Tuple[Optional[str], str], SecretRequirement] = {}
        self.validators: Dict[str, Validator] = dict(VALIDATORS)

    def add(self, req: SecretRequirement, ref: str) -> None:
        target = self.global_refs if req.agent is None else self.per_agent.setdefault(req.agent, {})
        target[req.key] = ref
        slot = (req.agent, req.key)
        previous = self.requirements.get(slot)
        if previous is not None:
            req = replace(
                previous,
                auto_resolvable=previous.auto_resolvable or req.auto_resolvable,
                required=previous.required or req.required,
            )
        self.requirements[slot] = req

    def hint_for(self, key: str) -> str:
        validator = self.validators.get(key)
        return validator.hint if validator else ""

    def plugin_validator(self, key: str, secret: PluginSecret) -> None:
        if secret.validator:
            self.validators.setdefault(key, Validator(prefixes=(secret.validator,)))


def _unique(names: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(names))


def _covering_secret(manifests: Sequence[PluginManifest], key: str) -> Optional[PluginSecret]:
    """Plugin secret matching a key by raw name or env-derived camelCase name."""
    for manifest in manifests:
        for raw_key, secret in manifest.secrets.items():
            if key in (raw_key, env_var_to_camel(secret.env_var)):
                return secret
    return None


def build_manifest_secrets(
    provider: str,
    agents: Sequence[ResolvedAgent],
    registry: PluginRegistry,
) -> SecretSchema:
    """Build the secret schema for a fleet.

    Args:
        provider: Deployment provider (aws | hetzner | local)
        agents: Agents hydrated with their identities, in manifest order
        registry: Plugin registry used to look up each plugin's secrets

    Returns:
        SecretSchema with global and per-agent reference templates
    """
    builder = _SchemaBuilder(registry)

    # 1. Model provider keys, only for providers some agent actually uses
    all_models = [model for agent in agents for model in agent.models]
    for name in get_required_providers(all_models):
        mp = MODEL_PROVIDERS[name]
        builder.add(
            SecretRequirement(
                key=mp.config_key, env_var=mp.env_var, scope="global",
                source=f"provider:{name}", hint=builder.hint_for(mp.config_key),
            ),
            env_ref(mp.env_var),
        )

    # 2. Transport secrets
    if provider != "local":
        for key, env_var, required, is_secret in TRANSPORT_SECRETS:
            builder.add(
                SecretRequirement(
                    key=key, env_var=env_var, scope="global", required=required,
                    is_secret=is_secret, source="transport", hint=builder.hint_for(key),
                ),
                env_ref(env_var),
            )

    # 3. Cloud credentials
    for key, env_var in PROVIDER_SECRETS.get(provider, []):
        builder.add(
            SecretRequirement(key=key, env_var=env_var, scope="global", source=f"cloud:{provider}"),
            env_ref(env_var),
        )

    # 4. Global dep and plugin secrets, once however many agents declare them
    agent_manifests: Dict[str, List[PluginManifest]] = {}
    for agent in agents:
        manifests = [registry.resolve(name, agent.identity) for name in _unique(agent.plugins)]
        agent_manifests[agent.name] = manifests
        for dep in _unique(agent.deps):
            entry = resolve_dep(dep)
            for key, secret in entry.secrets.items():
                if secret.scope == "global" and key not in builder.global_refs:
                    builder.add(
                        SecretRequirement(
                            key=key, env_var=secret.env_var, scope="global",
                            is_secret=secret.is_secret, source=f"dep:{dep}",
                            hint=secret.validator_hint or builder.hint_for(key),
                        ),
                        env_ref(secret.env_var),
                    )
        for manifest in manifests:
            for secret in manifest.secrets.values():
                if secret.scope != "global":
                    continue
                key = env_var_to_camel(secret.env_var)
                builder.plugin_validator(key, secret)
                if key in builder.global_refs:
                    continue
                builder.add(
                    SecretRequirement(
                        key=key, env_var=secret.env_var, scope="global",
                        is_secret=secret.is_secret, required=secret.required,
                        auto_resolvable=secret.auto_resolvable,
                        source=f"plugin:{manifest.name}", hint=builder.hint_for(key),
                    ),
                    env_ref(secret.env_var),
                )

    # 5 + 6. Per-agent plugin and dep secrets, then identity ad-hoc secrets
    for agent in agents:
        def add_agent_secret(key, env_suffix, source, secret=None, hint=""):
            env_var = agent_env_var_name(agent.role, env_suffix)
            builder.add(
                SecretRequirement(
                    key=key, env_var=env_var, scope="agent", agent=agent.name,
                    is_secret=secret.is_secret if secret else True,
                    required=secret.required if secret else True,
                    auto_resolvable=secret.auto_resolvable if secret else False,
                    source=source, hint=hint or builder.hint_for(key),
                ),
                env_ref(env_var),
            )

        manifests = agent_manifests[agent.name]
        for manifest in manifests:
            for secret in manifest.secrets.values():
                if secret.scope != "agent":
                    continue
                key = env_var_to_camel(secret.env_var)
                builder.plugin_validator(key, secret)
                add_agent_secret(key, secret.env_var, f"plugin:{manifest.name}", secret)

        for dep in _unique(agent.deps):
            entry = resolve_dep(dep)
            for key, secret in entry.secrets.items():
                if secret.scope == "agent":
                    add_agent_secret(key, secret.env_var, f"dep:{dep}", hint=secret.validator_hint)

        populated = builder.per_agent.get(agent.name, {})
        for key in agent.required_secrets:
            if key in populated:
                continue
            covering = _covering_secret(manifests, key)
            add_agent_secret(
                key,
                camel_to_screaming_snake(key),
                "identity",
                covering if covering is not None and covering.auto_resolvable else None,
            )
            populated = builder.per_agent[agent.name]

    managed = {mp.config_key for mp in MODEL_PROVIDERS.values()}
    managed.update(key for key, *_ in TRANSPORT_SECRETS)
    managed.update(key for entries in PROVIDER_SECRETS.values() for key, _ in entries)
    managed.update(
        key
        for entry in DEP_REGISTRY.values()
        for key, secret in entry.secrets.items()
        if secret.scope == "global"
    )
    managed.update(
        req.key for req in builder.requirements.values() if req.scope == "global"
    )

    schema = SecretSchema(
        global_refs=builder.global_refs,
        per_agent={name: refs for name, refs in builder.per_agent.items() if refs},
        requirements=list(builder.requirements.values()),
        managed_global_keys=sorted(managed),
        validators=builder.validators,
    )
    logger.info(
        f"Built secret schema: {len(schema.global_refs)} global, "
        f"{sum(len(v) for v in schema.per_agent.values())} per-agent across "
        f"{len(schema.per_agent)} agent(s)"
    )
    return schema

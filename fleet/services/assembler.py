"""Manifest assembler - merges resolution results into the persisted manifest.

Nothing here writes to disk until ``write_outputs`` is called, which the
pipeline only does once a whole pass has completed without a fatal error.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml
from pydantic import ValidationError

from fleet.constants import ENV_EXAMPLE_FILE, GITIGNORE_ENTRIES, GITIGNORE_FILE, MANIFEST_FILE
from fleet.errors import ManifestError
from fleet.models.manifest import AgentDefinition, FleetManifest, ResolvedAgent
from fleet.plugins.config import build_deployed_config
from fleet.plugins.registry import PluginRegistry
from fleet.services.env_service import extract_env_var_name
from fleet.services.hook_runner import AutoResolvedSecrets
from fleet.services.secret_schema import SecretRequirement, SecretSchema

logger = logging.getLogger(__name__)


def load_manifest(path: Path) -> FleetManifest:
    """Read and validate fleet.yaml."""
    if not path.exists():
        raise ManifestError(f"{path.name} not found in {path.parent}. Run `fleet init` first.")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ManifestError(f"Cannot parse {path.name}: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"{path.name} must contain a mapping")
    try:
        return FleetManifest.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ManifestError(f"Invalid {path.name}: {problems}") from e


def dump_manifest(manifest: FleetManifest) -> str:
    return yaml.safe_dump(
        manifest.to_document(),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )


class ManifestAssembler:
    """Builds the final manifest from hydrated agents, the schema and auto-resolved values."""

    def __init__(self, registry: PluginRegistry):
        self.registry = registry

    def inline_plugin_config(
        self,
        agent: ResolvedAgent,
        plugin_name: str,
        accumulator: AutoResolvedSecrets,
    ) -> Dict[str, Any]:
        """``{...defaults, ...existing, ...autoResolved, agentId}`` for one plugin."""
        plugin = self.registry.resolve(plugin_name, agent.identity)
        defaults = dict(plugin.default_config or {})
        defaults.update(agent.identity.manifest.plugin_defaults.get(plugin_name) or {})
        existing = (agent.definition.plugins or {}).get(plugin_name) or {}
        auto = {
            key: value
            for key, value in accumulator.for_role(agent.role).items()
            if key in plugin.secrets
        }
        return {**defaults, **existing, **auto, "agentId": agent.name}

    def assemble_agent(
        self,
        agent: ResolvedAgent,
        schema: SecretSchema,
        accumulator: AutoResolvedSecrets,
        reference: Optional[str] = None,
    ) -> AgentDefinition:
        definition = agent.definition.model_copy(deep=True)
        definition.name = agent.name
        definition.display_name = agent.display_name
        definition.role = agent.role
        if reference is not None:
            definition.identity = reference

        secrets = schema.merge_agent(agent.name, definition.secrets)
        definition.secrets = secrets or None

        plugins = dict(definition.plugins or {})
        for plugin_name in dict.fromkeys(agent.plugins):
            plugins[plugin_name] = self.inline_plugin_config(agent, plugin_name, accumulator)
        definition.plugins = plugins or None
        return definition

    def assemble(
        self,
        manifest: FleetManifest,
        agents: Sequence[Optional[ResolvedAgent]],
        schema: SecretSchema,
        accumulator: AutoResolvedSecrets,
        references: Optional[Dict[int, str]] = None,
        prune_stale: bool = True,
    ) -> FleetManifest:
        """Produce the manifest to persist.

        Args:
            manifest: The manifest as loaded (or scaffolded)
            agents: Hydrated agents aligned with ``manifest.agents``; None keeps
                that entry untouched
            schema: Secret schema built for this pass
            accumulator: Auto-resolved values from the hook runner
            references: Agent index -> new identity reference (repair)
            prune_stale: Drop engine-managed global keys nothing needs any more.
                Off when some agents were left untouched, since their needs
                are unknown
        """
        references = references or {}
        assembled = manifest.model_copy(deep=True)
        new_agents: List[AgentDefinition] = []
        for index, definition in enumerate(manifest.agents):
            agent = agents[index]
            if agent is None:
                new_agents.append(definition.model_copy(deep=True))
                continue
            new_agents.append(self.assemble_agent(agent, schema, accumulator, references.get(index)))

        names = [a.name for a in new_agents if a.name]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ManifestError(f"Duplicate agent names after assembly: {', '.join(duplicates)}")

        assembled.agents = new_agents
        assembled.secrets = schema.merge_global(manifest.secrets, prune=prune_stale) or None
        return assembled

    def deployed_configs(self, agent: ResolvedAgent, accumulator: AutoResolvedSecrets) -> List[Dict[str, Any]]:
        """Backend-facing plugin config sections for one agent."""
        sections = []
        for plugin_name in dict.fromkeys(agent.plugins):
            plugin = self.registry.resolve(plugin_name, agent.identity)
            inline = self.inline_plugin_config(agent, plugin_name, accumulator)
            sections.append(build_deployed_config(plugin, inline))
        return sections


def generate_env_example(
    global_refs: Dict[str, str],
    agents: Sequence[ResolvedAgent],
    schema: SecretSchema,
) -> str:
    """Render .env.example: global variables first, then one section per agent."""
    lines = [
        "# Fleet secrets - copy to .env and fill in values",
        f"# See {MANIFEST_FILE} 'secrets' section for which keys map where",
        "",
    ]

    global_lines = []
    seen = set()
    for key, ref in global_refs.items():
        var_name = extract_env_var_name(ref)
        if not var_name or var_name in seen:
            continue
        seen.add(var_name)
        global_lines.append(_env_example_line(var_name, schema.requirement(key)))
    if global_lines:
        lines.append("# ── Required ─────────────────────────────────")
        lines.extend(global_lines)

    for agent in agents:
        refs = schema.per_agent.get(agent.name)
        if not refs:
            continue
        lines.append("")
        lines.append(f"# ── Agent: {agent.display_name} ({agent.role}) ──────────────────────")
        for key, ref in refs.items():
            var_name = extract_env_var_name(ref)
            if not var_name:
                continue
            lines.append(_env_example_line(var_name, schema.requirement(key, agent.name)))

    lines.append("")
    return "\n".join(lines)


def _env_example_line(var_name: str, req: Optional[SecretRequirement]) -> str:
    if req is not None and req.auto_resolvable:
        return f"# {var_name}=  # auto-resolved by `fleet setup`"
    if req is not None and not req.required:
        return f"{var_name}=  # optional"
    return f"{var_name}="


def ensure_gitignore(root: Path) -> List[str]:
    """Append missing fleet entries to .gitignore. Returns the entries added."""
    path = root / GITIGNORE_FILE
    content = path.read_text(encoding="utf-8") if path.exists() else ""
    present = {line.strip() for line in content.splitlines()}
    added = [entry for entry in GITIGNORE_ENTRIES if entry not in present]
    if added:
        if content and not content.endswith("\n"):
            content += "\n"
        content += "\n".join(added) + "\n"
        path.write_text(content, encoding="utf-8")
        logger.info(f"Added {', '.join(added)} to {path}")
    return added


def write_outputs(root: Path, manifest: FleetManifest, env_example: str) -> None:
    """Persist fleet.yaml and .env.example."""
    (root / MANIFEST_FILE).write_text(dump_manifest(manifest), encoding="utf-8")
    (root / ENV_EXAMPLE_FILE).write_text(env_example, encoding="utf-8")
    logger.info(f"Wrote {MANIFEST_FILE} and {ENV_EXAMPLE_FILE} in {root}")

"""Fleet pipeline - init, repair, setup and onboard passes over a project.

Data flows one way: identities -> schema -> resolver -> hook runner ->
assembler. Every pass either completes and writes its outputs, or raises a
FleetError before anything is written.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from fleet.constants import (
    AUTO_TEMPLATE_VARS,
    DEFAULT_INSTANCE_TYPE,
    DEFAULT_PROVIDER,
    DEFAULT_REGION,
    DEFAULT_STACK_NAME,
    ENV_EXAMPLE_FILE,
    ENV_FILE,
    MANIFEST_FILE,
)
from fleet.errors import (
    FleetError,
    IdentityResolutionError,
    ManifestError,
    MissingSecret,
    SecretResolutionGap,
    TemplateVarError,
    ValidatorWarning,
)
from fleet.models.manifest import AgentDefinition, FleetManifest, ResolvedAgent
from fleet.plugins.deps import resolve_dep
from fleet.plugins.registry import PluginRegistry
from fleet.services.assembler import (
    ManifestAssembler,
    ensure_gitignore,
    generate_env_example,
    load_manifest,
    write_outputs,
)
from fleet.services.env_service import build_env_dict, env_var_to_camel
from fleet.services.hook_runner import (
    AutoResolvedSecrets,
    HookOutcome,
    InputCollector,
    LifecycleHookRunner,
    ScriptInvoker,
    scoped_env_var,
)
from fleet.services.identity_service import (
    IdentityAdapter,
    discover_identity_sources,
    is_git_reference,
)
from fleet.services.matcher import MatchResult, match_identities
from fleet.services.secret_resolver import (
    ResolvedSecrets,
    format_missing_report,
    load_env_secrets,
    run_validators,
    split_missing,
)
from fleet.services.secret_schema import SecretSchema, build_manifest_secrets

logger = logging.getLogger(__name__)


class PipelineProgress:
    """Progress sink for operator-facing messages. The default only logs."""

    def info(self, message: str) -> None:
        logger.info(message)

    def success(self, message: str) -> None:
        logger.info(message)

    def warn(self, message: str) -> None:
        logger.warning(message)

    def instructions(self, title: str, text: str) -> None:
        logger.info(f"{title}\n{text}")


@dataclass
class SecretStatus:
    env_var: str
    key: str
    status: str  # "set" | "missing" | "auto" | "optional"
    agent: Optional[str] = None
    hint: str = ""


@dataclass
class SetupResult:
    manifest: FleetManifest
    agents: List[ResolvedAgent]
    schema: SecretSchema
    resolved: ResolvedSecrets
    auto_resolved: AutoResolvedSecrets
    warnings: List[ValidatorWarning] = field(default_factory=list)
    deferred: List[MissingSecret] = field(default_factory=list)
    hook_outcomes: List[HookOutcome] = field(default_factory=list)
    provisioning: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RepairResult:
    manifest: FleetManifest
    match: MatchResult
    flagged_agents: List[str] = field(default_factory=list)
    orphaned_sources: List[str] = field(default_factory=list)
    template_warnings: List[str] = field(default_factory=list)


def resolve_template_vars(
    manifest: FleetManifest,
    agents: Sequence[ResolvedAgent],
) -> Tuple[Dict[str, str], List[str]]:
    """Values for identity template variables, plus the names still missing."""
    values = {}
    for var, attr in AUTO_TEMPLATE_VARS.items():
        value = getattr(manifest, attr, None)
        if value:
            values[var] = value
    values.update({k: v for k, v in (manifest.template_vars or {}).items() if v})

    missing = sorted({
        var
        for agent in agents
        for var in agent.identity.manifest.template_vars
        if not values.get(var)
    })
    return values, missing


class FleetPipeline:
    """Runs engine passes over one fleet project directory."""

    def __init__(
        self,
        root: Path,
        registry: Optional[PluginRegistry] = None,
        identity_adapter: Optional[IdentityAdapter] = None,
        collector: Optional[InputCollector] = None,
        invoker: Optional[ScriptInvoker] = None,
        progress: Optional[PipelineProgress] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.root = Path(root)
        self.registry = registry or PluginRegistry()
        self.identities = identity_adapter or IdentityAdapter(base_dir=self.root)
        self.collector = collector
        self.invoker = invoker or ScriptInvoker()
        self.progress = progress or PipelineProgress()
        self.environ = os.environ if environ is None else environ
        self.assembler = ManifestAssembler(self.registry)

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def hydrate(self, manifest: FleetManifest) -> List[ResolvedAgent]:
        """Fetch every agent's identity. Identity failures abort the pass."""
        agents = []
        for definition in manifest.agents:
            identity = self.identities.fetch(definition.identity)
            agents.append(ResolvedAgent.from_definition(definition, identity))
        self._check_unique_names(agents)
        return agents

    @staticmethod
    def _check_unique_names(agents: Sequence[Optional[ResolvedAgent]]) -> None:
        seen = set()
        for agent in agents:
            if agent is None:
                continue
            if agent.name in seen:
                raise ManifestError(
                    f"Duplicate agent name '{agent.name}'. Give one of them an explicit 'name'."
                )
            seen.add(agent.name)

    def _load_env(self, env_file: Optional[Path], required: bool = True) -> Dict[str, str]:
        path = Path(env_file) if env_file else self.root / ENV_FILE
        if not path.exists():
            if required:
                raise FleetError(
                    f"{path} not found. Copy {ENV_EXAMPLE_FILE} to {ENV_FILE} and fill in values."
                )
            logger.info(f"No env file at {path}, using process environment only")
            return build_env_dict(None, self.environ)
        return build_env_dict(path, self.environ)

    def _resolve(self, manifest: FleetManifest, agents: Sequence[ResolvedAgent], env: Mapping[str, str]):
        schema = build_manifest_secrets(manifest.provider, agents, self.registry)
        global_refs = schema.merge_global(manifest.secrets)
        agent_refs = {
            agent.name: schema.merge_agent(agent.name, agent.definition.secrets) for agent in agents
        }
        resolved = load_env_secrets(global_refs, agent_refs, env)
        return schema, resolved

    def _write(
        self,
        manifest: FleetManifest,
        agents: Sequence[Optional[ResolvedAgent]],
        schema: SecretSchema,
        accumulator: AutoResolvedSecrets,
        references: Optional[Dict[int, str]] = None,
    ) -> FleetManifest:
        assembled = self.assembler.assemble(
            manifest, agents, schema, accumulator, references, prune_stale=all(a is not None for a in agents)
        )
        env_example = generate_env_example(
            assembled.secrets or {}, [a for a in agents if a is not None], schema
        )
        write_outputs(self.root, assembled, env_example)
        for entry in ensure_gitignore(self.root):
            self.progress.info(f"Added {entry} to .gitignore")
        return assembled

    # ------------------------------------------------------------------
    # init / repair
    # ------------------------------------------------------------------

    def init_project(
        self,
        references: Optional[List[str]] = None,
        provider: str = DEFAULT_PROVIDER,
        stack_name: str = DEFAULT_STACK_NAME,
        region: str = DEFAULT_REGION,
        instance_type: str = DEFAULT_INSTANCE_TYPE,
        owner_name: str = "",
    ) -> FleetManifest:
        """Scaffold fleet.yaml, or repair it if it already exists."""
        if self.manifest_path.exists():
            self.progress.info(f"{MANIFEST_FILE} exists, running repair")
            return self.repair().manifest

        if not references:
            references = [source.reference for source in discover_identity_sources(self.root)]
        if not references:
            raise FleetError(
                f"No identity sources found under {self.root}. "
                "Pass identity references explicitly or add a directory with identity.yaml."
            )

        definitions = []
        for reference in references:
            identity = self.identities.fetch(reference)
            m = identity.manifest
            definitions.append(
                AgentDefinition(
                    name=f"agent-{m.name}",
                    display_name=m.display_name,
                    role=m.role,
                    identity=reference,
                    volume_size=m.volume_size,
                )
            )

        manifest = FleetManifest(
            stack_name=stack_name,
            provider=provider,
            region=region,
            instance_type=instance_type,
            owner_name=owner_name or self.environ.get("USER", "owner"),
            agents=definitions,
        )
        agents = self.hydrate(manifest)
        _, missing_vars = resolve_template_vars(manifest, agents)
        if missing_vars:
            self.progress.warn(
                f"Template variables to fill in under 'templateVars': {', '.join(missing_vars)}"
            )
        schema = build_manifest_secrets(manifest.provider, agents, self.registry)
        assembled = self._write(manifest, agents, schema, AutoResolvedSecrets())
        self.progress.success(f"Created {MANIFEST_FILE} with {len(agents)} agent(s)")
        return assembled

    def repair(self) -> RepairResult:
        """Reconcile fleet.yaml with identity sources on disk and refresh derived sections."""
        manifest = load_manifest(self.manifest_path)
        sources = discover_identity_sources(self.root)

        eligible = [i for i, a in enumerate(manifest.agents) if not is_git_reference(a.identity)]
        local_match = match_identities([manifest.agents[i] for i in eligible], sources)

        # Map matcher indexes back onto manifest indexes
        for m in local_match.matches:
            m.agent_index = eligible[m.agent_index]
        local_match.unmatched_agents = [eligible[i] for i in local_match.unmatched_agents]

        references = {m.agent_index: m.reference for m in local_match.matches}
        flagged = set(local_match.unmatched_agents)

        agents: List[Optional[ResolvedAgent]] = []
        for index, definition in enumerate(manifest.agents):
            reference = references.get(index, definition.identity)
            try:
                identity = self.identities.fetch(reference)
            except IdentityResolutionError as e:
                if index not in flagged:
                    raise
                self.progress.warn(f"Keeping agent entry unchanged: {e}")
                agents.append(None)
                continue
            agents.append(
                ResolvedAgent.from_definition(definition.model_copy(update={"identity": reference}), identity)
            )
        self._check_unique_names(agents)

        present = [a for a in agents if a is not None]
        _, missing_vars = resolve_template_vars(manifest, present)
        template_warnings = []
        if missing_vars:
            message = f"Template variables without a value: {', '.join(missing_vars)}"
            template_warnings.append(message)
            self.progress.warn(message)

        for ambiguity in local_match.ambiguous:
            self.progress.warn(str(ambiguity))
        flagged_names = []
        for index in local_match.unmatched_agents:
            label = manifest.agents[index].name or manifest.agents[index].identity
            flagged_names.append(label)
            self.progress.warn(
                f"Agent {label} kept its identity reference {manifest.agents[index].identity}; check it manually"
            )
        orphaned = [s.reference for s in local_match.orphaned]
        for reference in orphaned:
            self.progress.warn(f"Identity {reference} is not used by any agent; add it to {MANIFEST_FILE} manually")

        schema = build_manifest_secrets(manifest.provider, present, self.registry)
        assembled = self._write(manifest, agents, schema, AutoResolvedSecrets(), references)
        self.progress.success(
            f"Repaired {MANIFEST_FILE}: {len(local_match.matches)} matched, "
            f"{len(flagged_names)} flagged, {len(orphaned)} orphaned"
        )
        return RepairResult(
            manifest=assembled,
            match=local_match,
            flagged_agents=flagged_names,
            orphaned_sources=orphaned,
            template_warnings=template_warnings,
        )

    # ------------------------------------------------------------------
    # setup / onboard
    # ------------------------------------------------------------------

    def setup(self, env_file: Optional[Path] = None, onboard: bool = False, skip_hooks: bool = False) -> SetupResult:
        """Resolve every secret, run hooks, and write the final manifest."""
        return self._run(env_file, onboard=onboard, skip_hooks=skip_hooks, gate=True)

    def onboard(self, env_file: Optional[Path] = None) -> SetupResult:
        """Run onboard hooks on their own. Missing secrets are reported, not fatal."""
        return self._run(env_file, onboard=True, skip_hooks=False, gate=False)

    def _run(self, env_file: Optional[Path], onboard: bool, skip_hooks: bool, gate: bool) -> SetupResult:
        manifest = load_manifest(self.manifest_path)
        agents = self.hydrate(manifest)
        self.progress.success(f"Loaded {len(agents)} agent(s) from {MANIFEST_FILE}")

        _, missing_vars = resolve_template_vars(manifest, agents)
        if missing_vars:
            raise TemplateVarError(missing_vars)

        env = self._load_env(env_file)
        schema, resolved = self._resolve(manifest, agents, env)

        warnings = run_validators(resolved, schema.validators)
        for warning in warnings:
            self.progress.warn(f"Validation: {warning}")

        required, deferred = split_missing(resolved.missing, schema)
        display_names = {a.name: a.display_name for a in agents}
        if required:
            report = format_missing_report(required, schema, display_names)
            if gate:
                raise SecretResolutionGap(required, report)
            self.progress.warn(f"{len(required)} secret(s) still missing:\n{report}")
        else:
            self.progress.success("All secrets resolved")

        accumulator = AutoResolvedSecrets()
        runner = LifecycleHookRunner(
            env,
            accumulator,
            invoker=self.invoker,
            collector=self.collector,
            known_secrets=resolved.secret_values(schema),
        )
        outcomes: List[HookOutcome] = []
        unresolved: Dict[Tuple[Optional[str], str], MissingSecret] = {}

        for agent in agents:
            agent_secrets = resolved.scoped(agent.name)
            for plugin_name in dict.fromkeys(agent.plugins):
                plugin = self.registry.resolve(plugin_name, agent.identity)
                outcome = runner.auto_resolve(agent, plugin, agent_secrets, run_hooks=not skip_hooks)
                outcomes.append(outcome)
                for key in outcome.resolved_keys:
                    self.progress.success(f"Resolved {key} for {agent.display_name} ({plugin_name})")
                for key, secret in plugin.secrets.items():
                    if not (secret.auto_resolvable and secret.required):
                        continue
                    if runner.has_value(agent.role, key, secret, agent_secrets):
                        continue
                    if secret.scope == "global":
                        owner, missing_key = None, env_var_to_camel(secret.env_var)
                    else:
                        owner, missing_key = agent.name, key
                        if agent_secrets.get(env_var_to_camel(secret.env_var)):
                            continue
                    unresolved.setdefault(
                        (owner, missing_key),
                        MissingSecret(
                            key=missing_key, env_var=scoped_env_var(agent.role, secret), agent=owner
                        ),
                    )
        if skip_hooks:
            self.progress.warn("Hooks skipped (--skip-hooks)")
        if unresolved and gate:
            gaps = list(unresolved.values())
            raise SecretResolutionGap(gaps, format_missing_report(gaps, schema, display_names))

        has_onboard = any(
            self.registry.resolve(p, a.identity).onboard_hook is not None for a in agents for p in a.plugins
        )
        if onboard:
            for agent in agents:
                for plugin_name in dict.fromkeys(agent.plugins):
                    plugin = self.registry.resolve(plugin_name, agent.identity)
                    if plugin.onboard_hook is None:
                        continue
                    outcome = runner.run_onboard(agent, plugin, resolved.scoped(agent.name))
                    outcomes.append(outcome)
                    if outcome.skipped:
                        self.progress.info(
                            f"Onboard hook for {plugin_name} ({agent.display_name}): skipped (already configured)"
                        )
                    elif outcome.instructions:
                        self.progress.instructions(
                            f"Follow-up instructions for {plugin_name} ({agent.display_name})",
                            outcome.instructions,
                        )
        elif has_onboard:
            self.progress.info("Onboard hooks skipped. Use --onboard or run `fleet onboard` separately.")

        assembled = self._write(manifest, agents, schema, accumulator)
        provisioning = self._provisioning_inputs(assembled, agents, schema, resolved, accumulator)
        return SetupResult(
            manifest=assembled,
            agents=agents,
            schema=schema,
            resolved=resolved,
            auto_resolved=accumulator,
            warnings=warnings,
            deferred=deferred,
            hook_outcomes=outcomes,
            provisioning=provisioning,
        )

    def _provisioning_inputs(
        self,
        manifest: FleetManifest,
        agents: Sequence[ResolvedAgent],
        schema: SecretSchema,
        resolved: ResolvedSecrets,
        accumulator: AutoResolvedSecrets,
    ) -> Dict[str, Any]:
        """Everything the provisioning backend needs, with secret values resolved.

        ``isSecret`` tells the backend which values to store encrypted.
        """
        def secret_flags(agent_name: Optional[str]) -> Dict[str, bool]:
            return {req.key: req.is_secret for req in schema.requirements if req.agent == agent_name}

        return {
            "stackName": manifest.stack_name,
            "provider": manifest.provider,
            "region": manifest.region,
            "instanceType": manifest.instance_type,
            "secrets": dict(resolved.global_secrets),
            "isSecret": secret_flags(None),
            "agents": [
                {
                    "name": agent.name,
                    "displayName": agent.display_name,
                    "role": agent.role,
                    "volumeSize": agent.volume_size,
                    "instanceType": agent.instance_type or manifest.instance_type,
                    "secrets": dict(resolved.for_agent(agent.name)),
                    "isSecret": secret_flags(agent.name),
                    "autoResolved": accumulator.for_role(agent.role),
                    "plugins": self.assembler.deployed_configs(agent, accumulator),
                    "deps": [
                        {"name": dep.name, "installScript": dep.install_script}
                        for dep in map(resolve_dep, dict.fromkeys(agent.deps))
                    ],
                }
                for agent in agents
            ],
        }

    # ------------------------------------------------------------------
    # secrets status
    # ------------------------------------------------------------------

    def secrets_status(self, env_file: Optional[Path] = None) -> List[SecretStatus]:
        """Status of every env var the fleet reads. Never raises on gaps."""
        manifest = load_manifest(self.manifest_path)
        agents = self.hydrate(manifest)
        env = self._load_env(env_file, required=False)
        schema, resolved = self._resolve(manifest, agents, env)

        gaps = {(m.agent, m.key): m for m in resolved.missing}
        statuses = []
        for req in schema.requirements:
            gap = gaps.get((req.agent, req.key))
            if gap is None:
                status = "set"
            elif req.auto_resolvable:
                status = "auto"
            elif not req.required:
                status = "optional"
            else:
                status = "missing"
            statuses.append(
                SecretStatus(env_var=req.env_var, key=req.key, status=status, agent=req.agent, hint=req.hint)
            )
        return statuses

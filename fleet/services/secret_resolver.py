"""Secret reference resolver.

Resolves ``${env:VAR}`` references against a merged environment dict. Every
declared key is visited exactly once and ends up either resolved or in
``missing``; nothing raises here, the caller decides how to report gaps.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from fleet.errors import MissingSecret, ValidatorWarning
from fleet.services.env_service import Validator, extract_env_var_name, resolve_env_ref
from fleet.services.secret_schema import SecretSchema

logger = logging.getLogger(__name__)


@dataclass
class ResolvedSecrets:
    """Output of one resolution pass."""

    global_secrets: Dict[str, str] = field(default_factory=dict)
    per_agent: Dict[str, Dict[str, str]] = field(default_factory=dict)
    missing: List[MissingSecret] = field(default_factory=list)

    def for_agent(self, agent: str) -> Dict[str, str]:
        return self.per_agent.get(agent, {})

    def scoped(self, agent: str) -> Dict[str, str]:
        """Global values overlaid with the agent's own, as its hooks see them."""
        return {**self.global_secrets, **self.for_agent(agent)}

    def secret_values(self, schema: SecretSchema) -> List[str]:
        """Resolved values of keys flagged isSecret. Keys the schema does not know count as secret."""

        def is_secret(key: str, agent: Optional[str]) -> bool:
            req = schema.requirement(key, agent)
            return req is None or req.is_secret

        found = [v for k, v in self.global_secrets.items() if is_secret(k, None)]
        for agent, secrets in self.per_agent.items():
            found.extend(v for k, v in secrets.items() if is_secret(k, agent))
        return found


def _resolve_map(
    refs: Mapping[str, str],
    env: Mapping[str, str],
    missing: List[MissingSecret],
    agent: Optional[str] = None,
) -> Dict[str, str]:
    resolved = {}
    for key, ref in refs.items():
        value = resolve_env_ref(ref, env)
        if value is not None:
            resolved[key] = value
        else:
            missing.append(MissingSecret(key=key, env_var=extract_env_var_name(ref) or ref, agent=agent))
    return resolved


def load_env_secrets(
    global_refs: Optional[Mapping[str, str]],
    agent_refs: Mapping[str, Optional[Mapping[str, str]]],
    env: Mapping[str, str],
) -> ResolvedSecrets:
    """Resolve global and per-agent references in a single exhaustive pass.

    Args:
        global_refs: The manifest's top-level secrets map
        agent_refs: Agent name -> that agent's secrets map (may be None)
        env: Merged environment dict

    Returns:
        ResolvedSecrets with every unresolved key recorded in ``missing``
    """
    result = ResolvedSecrets()
    result.global_secrets = _resolve_map(global_refs or {}, env, result.missing)
    for agent, refs in agent_refs.items():
        if not refs:
            continue
        result.per_agent[agent] = _resolve_map(refs, env, result.missing, agent)

    logger.info(
        f"Resolved {len(result.global_secrets) + sum(len(m) for m in result.per_agent.values())} secret(s), {len(result.missing)} missing"
    )
    return result


def run_validators(
    resolved: ResolvedSecrets,
    validators: Mapping[str, Validator],
) -> List[ValidatorWarning]:
    """Check resolved values against their validators. Never blocks resolution."""
    warnings = []
    for key, value in resolved.global_secrets.items():
        validator = validators.get(key)
        problem = validator.check(value) if validator else None
        if problem:
            warnings.append(ValidatorWarning(key=key, message=problem))
    for agent, secrets in resolved.per_agent.items():
        for key, value in secrets.items():
            validator = validators.get(key)
            problem = validator.check(value) if validator else None
            if problem:
                warnings.append(ValidatorWarning(key=key, message=problem, agent=agent))
    for warning in warnings:
        logger.warning(f"Validator: {warning}")
    return warnings


def split_missing(
    missing: List[MissingSecret],
    schema: SecretSchema,
) -> Tuple[List[MissingSecret], List[MissingSecret]]:
    """Split gaps into (required, deferred).

    Deferred gaps are auto-resolvable or optional secrets, which are never
    demanded from the operator. Keys the schema does not know (added to the
    manifest by hand) are treated as required.
    """
    required, deferred = [], []
    for gap in missing:
        req = schema.requirement(gap.key, gap.agent)
        if req is not None and req.deferred:
            deferred.append(gap)
        else:
            required.append(gap)
    return required, deferred


def format_missing_report(
    missing: List[MissingSecret],
    schema: SecretSchema,
    display_names: Optional[Mapping[str, str]] = None,
) -> str:
    """One line per gap: env var, owner, and the validator hint if there is one."""
    display_names = display_names or {}
    lines = []
    for gap in missing:
        if gap.agent:
            owner = f" - Agent: {display_names.get(gap.agent, gap.agent)}"
        else:
            owner = " - Required"
        req = schema.requirement(gap.key, gap.agent)
        hint = f" ({req.hint})" if req is not None and req.hint else ""
        lines.append(f"  {gap.env_var:<30}{owner}{hint}")
    return "\n".join(lines)

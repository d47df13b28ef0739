"""Lifecycle hook runner - resolve and onboard hooks declared by plugins.

Hooks are shell scripts run through ``/bin/sh -c`` one at a time. Resolve
hooks are non-interactive and fill auto-resolvable secrets; their trimmed
stdout is the value. Onboard hooks walk a small state machine per
(agent, plugin) pair::

    CHECK_RUNONCE -> COLLECT_INPUTS -> INVOKE -> SUCCESS | FAILURE

Their stdout is follow-up text for the operator and is always redacted
before anyone sees it.
"""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Set

from fleet.constants import ONBOARD_HOOK_TIMEOUT, RESOLVE_HOOK_TIMEOUT
from fleet.errors import HookFailure
from fleet.models.manifest import ResolvedAgent
from fleet.plugins.manifest import OnboardInput, PluginManifest, PluginSecret
from fleet.services.env_service import agent_env_var_name, env_var_to_camel
from fleet.utils.redact import redact_secrets

logger = logging.getLogger(__name__)


class HookState(str, Enum):
    """Onboard hook states."""

    CHECK_RUNONCE = "check_runonce"
    COLLECT_INPUTS = "collect_inputs"
    INVOKE = "invoke"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class HookResult:
    """Raw result of one script invocation."""

    ok: bool
    output: str = ""
    error: Optional[str] = None


@dataclass
class HookOutcome:
    """What happened to one hook, as reported back to the pipeline."""

    agent: str
    plugin: str
    kind: str  # "onboard" | "resolve"
    state: HookState = HookState.CHECK_RUNONCE
    skipped: bool = False
    instructions: Optional[str] = None
    resolved_keys: List[str] = field(default_factory=list)
    transitions: List[HookState] = field(default_factory=list)

    def move(self, state: HookState) -> None:
        self.transitions.append(state)
        self.state = state
        logger.debug(f"{self.kind} hook {self.plugin} ({self.agent}): -> {state.value}")


class ScriptInvoker:
    """Runs a hook script synchronously and maps its exit status to a HookResult."""

    def run(self, script: str, env: Mapping[str, str], timeout: int) -> HookResult:
        try:
            proc = subprocess.run(
                ["/bin/sh", "-c", script],
                env={**os.environ, **env},
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return HookResult(ok=False, error=f"Hook timed out after {timeout}s")
        except OSError as e:
            return HookResult(ok=False, error=f"Failed to spawn process: {e}")

        if proc.returncode != 0:
            return HookResult(
                ok=False,
                output=proc.stdout,
                error=f"Hook exited with code {proc.returncode}. stderr: {proc.stderr.strip()}",
            )
        return HookResult(ok=True, output=proc.stdout)


class InputCollector(Protocol):
    """Interactive input source. Implementations raise OnboardCancelled on cancel."""

    def show(self, text: str) -> None:
        ...

    def ask(self, message: str, validate: Callable[[str], Optional[str]], secret: bool = True) -> str:
        ...


class AutoResolvedSecrets:
    """Accumulator of auto-resolved values: role -> raw plugin secret key -> value.

    Written by the hook runner and read by later hooks and the assembler within
    one pass, so a value resolved once is reused rather than re-resolved.
    """

    def __init__(self):
        self._values: Dict[str, Dict[str, str]] = {}

    def get(self, role: str, key: str) -> Optional[str]:
        return self._values.get(role, {}).get(key)

    def has(self, role: str, key: str) -> bool:
        return bool(self.get(role, key))

    def set(self, role: str, key: str, value: str) -> None:
        self._values.setdefault(role, {})[key] = value

    def for_role(self, role: str) -> Dict[str, str]:
        return dict(self._values.get(role, {}))

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        return {role: dict(values) for role, values in self._values.items()}


def _bypass_hint(role: str) -> str:
    return (
        f"Set the required env vars in your .env file (prefixed with {role.upper()}_) "
        "to bypass hook resolution."
    )


def scoped_env_var(role: str, secret: PluginSecret) -> str:
    """Env var a plugin secret is read from: bare for global scope, role-prefixed otherwise."""
    return secret.env_var if secret.scope == "global" else agent_env_var_name(role, secret.env_var)


def _is_secret_env(manifest: PluginManifest, env_var: str) -> bool:
    """Whether a hook env var carries a secret. Env vars no plugin secret declares count as secret."""
    for secret in manifest.secrets.values():
        if secret.env_var == env_var:
            return secret.is_secret
    return True


class LifecycleHookRunner:
    """Runs resolve and onboard hooks strictly sequentially."""

    def __init__(
        self,
        env: Mapping[str, str],
        accumulator: AutoResolvedSecrets,
        invoker: Optional[ScriptInvoker] = None,
        collector: Optional[InputCollector] = None,
        known_secrets: Iterable[str] = (),
        onboard_timeout: int = ONBOARD_HOOK_TIMEOUT,
        resolve_timeout: int = RESOLVE_HOOK_TIMEOUT,
    ):
        self.env = env
        self.accumulator = accumulator
        self.invoker = invoker or ScriptInvoker()
        self.collector = collector
        self.known_secrets: Set[str] = set(known_secrets)
        self.onboard_timeout = onboard_timeout
        self.resolve_timeout = resolve_timeout

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _hook_env(self, agent: ResolvedAgent, manifest: PluginManifest, resolved: Mapping[str, str]) -> Dict[str, str]:
        """Resolved and auto-resolved values under the plugin's env var names.

        ``resolved`` holds the global values overlaid with the agent's own.
        """
        hook_env = {}
        auto = self.accumulator.for_role(agent.role)
        for key, secret in manifest.secrets.items():
            value = (
                resolved.get(env_var_to_camel(secret.env_var))
                or auto.get(key)
                or self.env.get(scoped_env_var(agent.role, secret))
            )
            if value:
                hook_env[secret.env_var] = value
        return hook_env

    def _remember(self, role: str, key: str, secret: PluginSecret, value: str) -> None:
        self.accumulator.set(role, key, value)
        if secret.is_secret:
            self.known_secrets.add(value)

    def _redact(self, text: str, manifest: PluginManifest, hook_env: Mapping[str, str]) -> str:
        """Scrub known secret values plus the hook env entries that hold secrets."""
        known = set(self.known_secrets)
        known.update(v for k, v in hook_env.items() if _is_secret_env(manifest, k))
        return redact_secrets(text, known)

    def has_value(self, role: str, key: str, secret: PluginSecret, resolved: Mapping[str, str]) -> bool:
        """True when a plugin secret already has a value for this role.

        Global secrets count as set once resolved (or present in the env);
        agent secrets only once they are in the accumulator.
        """
        if self.accumulator.has(role, key):
            return True
        if secret.scope == "global":
            return bool(resolved.get(env_var_to_camel(secret.env_var)) or self.env.get(secret.env_var))
        return False

    # ------------------------------------------------------------------
    # Resolve hooks
    # ------------------------------------------------------------------

    def auto_resolve(
        self,
        agent: ResolvedAgent,
        manifest: PluginManifest,
        resolved: Mapping[str, str],
        run_hooks: bool = True,
    ) -> HookOutcome:
        """Fill the plugin's auto-resolvable secrets for one agent.

        Sources, in order: a value already in the accumulator (or, for global
        secrets, the resolved global value), the agent's existing inline plugin
        config, the secret's env var, and finally the plugin's resolve hook.

        Raises:
            HookFailure: a resolve hook failed, timed out or printed nothing
        """
        outcome = HookOutcome(agent=agent.name, plugin=manifest.name, kind="resolve")
        role = agent.role
        existing_config = (agent.definition.plugins or {}).get(manifest.name) or {}

        for key, secret in manifest.secrets.items():
            if not secret.auto_resolvable or self.has_value(role, key, secret, resolved):
                continue
            existing = existing_config.get(key)
            if existing:
                self._remember(role, key, secret, str(existing))
                logger.info(f"{key} for {agent.name} taken from existing {manifest.name} config")
                continue
            env_var = scoped_env_var(role, secret)
            if self.env.get(env_var):
                self._remember(role, key, secret, self.env[env_var])
                logger.info(f"{key} for {agent.name} taken from {env_var}")

        pending = {
            k: script
            for k, script in manifest.resolve_hooks.items()
            if not self.has_value(role, k, manifest.secrets[k], resolved)
        }
        if not pending or not run_hooks:
            outcome.skipped = True
            outcome.move(HookState.SUCCESS)
            return outcome

        for key, script in pending.items():
            secret = manifest.secrets[key]
            hook_env = self._hook_env(agent, manifest, resolved)
            outcome.move(HookState.INVOKE)
            logger.info(f"Running resolve hook {manifest.name}.{key} for {agent.name}")
            result = self.invoker.run(script, hook_env, self.resolve_timeout)
            value = result.output.strip() if result.ok else ""
            if not value:
                outcome.move(HookState.FAILURE)
                error = result.error or "Resolve hook produced empty output (resolved value cannot be empty)"
                error = self._redact(error, manifest, hook_env)
                logger.error(f"Resolve hook {manifest.name}.{key} failed for {agent.name}: {error}")
                raise HookFailure(
                    agent=agent.name,
                    plugin=manifest.name,
                    kind="resolve",
                    error=f'Failed to resolve secret "{key}" ({secret.env_var}): {error}',
                    remediation=_bypass_hint(role),
                )
            self._remember(role, key, secret, value)
            outcome.resolved_keys.append(key)

        outcome.move(HookState.SUCCESS)
        return outcome

    # ------------------------------------------------------------------
    # Onboard hooks
    # ------------------------------------------------------------------

    def _already_configured(self, agent: ResolvedAgent, manifest: PluginManifest, resolved: Mapping[str, str]) -> bool:
        required = manifest.required_secrets
        if not required:
            return False
        return all(
            self.has_value(agent.role, key, secret, resolved)
            or bool(self.env.get(scoped_env_var(agent.role, secret)))
            for key, secret in required.items()
        )

    def _input_instructions(self, manifest: PluginManifest, onboard_input: OnboardInput) -> Optional[str]:
        if onboard_input.instructions:
            return onboard_input.instructions
        for secret in manifest.secrets.values():
            if secret.env_var == onboard_input.env_var and secret.instructions:
                return secret.instructions.render()
        return None

    def _collect_inputs(self, agent: ResolvedAgent, manifest: PluginManifest) -> Dict[str, str]:
        hook = manifest.onboard_hook
        collected: Dict[str, str] = {}
        shown: Set[str] = set()

        for input_key, onboard_input in hook.inputs.items():
            env_var = onboard_input.env_var
            value = self.env.get(env_var) or self.env.get(agent_env_var_name(agent.role, env_var))
            if value:
                collected[onboard_input.env_var] = value
                continue

            if self.collector is None:
                raise HookFailure(
                    agent=agent.name,
                    plugin=manifest.name,
                    kind="onboard",
                    error=f"input {input_key} ({onboard_input.env_var}) is not set and no interactive prompt is available",
                    remediation=_bypass_hint(agent.role),
                )

            text = self._input_instructions(manifest, onboard_input)
            if text and text not in shown:
                self.collector.show(text)
                shown.add(text)

            def validate(val: str, key=input_key, prefix=onboard_input.validator) -> Optional[str]:
                if not val:
                    return f"{key} is required"
                if prefix and not val.startswith(prefix):
                    return f'{key} must start with "{prefix}"'
                return None

            collected[onboard_input.env_var] = self.collector.ask(
                onboard_input.prompt, validate, secret=_is_secret_env(manifest, env_var)
            )

        return collected

    def run_onboard(
        self,
        agent: ResolvedAgent,
        manifest: PluginManifest,
        resolved: Mapping[str, str],
    ) -> HookOutcome:
        """Run one plugin's onboard hook for one agent.

        Raises:
            OnboardCancelled: the operator cancelled input collection
            HookFailure: the script failed or timed out
        """
        hook = manifest.onboard_hook
        outcome = HookOutcome(agent=agent.name, plugin=manifest.name, kind="onboard")
        if hook is None:
            outcome.skipped = True
            outcome.move(HookState.SUCCESS)
            return outcome

        outcome.move(HookState.CHECK_RUNONCE)
        if hook.run_once and self._already_configured(agent, manifest, resolved):
            logger.info(f"Onboard hook for {manifest.name} ({agent.name}): skipped, already configured")
            outcome.skipped = True
            outcome.move(HookState.SUCCESS)
            return outcome

        outcome.move(HookState.COLLECT_INPUTS)
        logger.info(f"Running onboard hook for {manifest.name} ({agent.name}): {hook.description}")
        hook_env = self._hook_env(agent, manifest, resolved)
        inputs = self._collect_inputs(agent, manifest)
        hook_env.update(inputs)

        outcome.move(HookState.INVOKE)
        result = self.invoker.run(hook.script, hook_env, self.onboard_timeout)
        if not result.ok:
            outcome.move(HookState.FAILURE)
            error = self._redact(result.error or "unknown error", manifest, hook_env)
            logger.error(f"Onboard hook for {manifest.name} ({agent.name}) failed: {error}")
            raise HookFailure(
                agent=agent.name,
                plugin=manifest.name,
                kind="onboard",
                error=error,
                remediation=(
                    "Fix the issue and run `fleet setup --onboard` again, or set the "
                    f"{agent.role.upper()}_-prefixed env vars in your .env file to bypass hook resolution."
                ),
            )

        instructions = result.output.strip()
        if instructions:
            outcome.instructions = self._redact(instructions, manifest, hook_env)
        outcome.move(HookState.SUCCESS)
        return outcome

"""Environment handling: .env parsing, ${env:VAR} references, key naming and validators."""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

from dotenv import dotenv_values

from fleet.services.model_providers import MODEL_PROVIDERS

ENV_REF_RE = re.compile(r"^\$\{env:([^}]+)\}$")


def parse_env_file(path: Union[str, Path]) -> Dict[str, str]:
    """Parse a .env file into a dict. Returns {} if the file does not exist.

    Keys without a value (no ``=``) are dropped; quoted values are unquoted.
    """
    path = Path(path)
    if not path.exists():
        return {}
    values = dotenv_values(path, interpolate=False)
    return {k: v for k, v in values.items() if v is not None}


def build_env_dict(
    env_file: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Merge a .env file with the process environment. Process values win."""
    merged = parse_env_file(env_file) if env_file else {}
    merged.update(os.environ if environ is None else environ)
    return merged


def env_ref(var_name: str) -> str:
    return "${env:" + var_name + "}"


def extract_env_var_name(ref: str) -> Optional[str]:
    """Env var name of a ``${env:VAR}`` reference, or None for a literal."""
    match = ENV_REF_RE.match(ref)
    return match.group(1) if match else None


def resolve_env_ref(ref: str, env: Mapping[str, str]) -> Optional[str]:
    """Resolve one reference against an env dict.

    A ``${env:VAR}`` reference yields the variable's value, or None when it is
    unset or empty. Anything else is a literal and is returned unchanged.
    """
    var_name = extract_env_var_name(ref)
    if var_name is None:
        return ref
    value = env.get(var_name)
    return value if value else None


def agent_env_var_name(role: str, suffix: str) -> str:
    """Per-agent env var name: <ROLE>_<SUFFIX>."""
    return f"{role.upper()}_{suffix}"


def env_var_to_camel(env_var: str) -> str:
    """SLACK_BOT_TOKEN -> slackBotToken."""
    parts = env_var.lower().split("_")
    return parts[0] + "".join(part[:1].upper() + part[1:] for part in parts[1:])


def camel_to_screaming_snake(key: str) -> str:
    """notionApiKey -> NOTION_API_KEY, myHTTPToken -> MY_HTTP_TOKEN."""
    key = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", key)
    key = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", key)
    return key.upper()


@dataclass(frozen=True)
class Validator:
    """Prefix/suffix check for a secret value."""

    prefixes: Tuple[str, ...] = ()
    suffix: str = ""

    def check(self, value: str) -> Optional[str]:
        """Return a problem description, or None if the value looks right."""
        if self.prefixes and not value.startswith(self.prefixes):
            return f"Must start with {' or '.join(self.prefixes)}"
        if self.suffix and not value.endswith(self.suffix):
            return f"Must end with {self.suffix}"
        return None

    @property
    def hint(self) -> str:
        if self.prefixes:
            return f"must start with {' or '.join(self.prefixes)}"
        if self.suffix:
            return f"must end with {self.suffix}"
        return ""


# Infrastructure validators, present regardless of plugins
VALIDATORS: Dict[str, Validator] = {
    **{
        provider.config_key: Validator(prefixes=(provider.key_prefix,))
        for provider in MODEL_PROVIDERS.values()
        if provider.key_prefix
    },
    "tailscaleAuthKey": Validator(prefixes=("tskey-auth-",)),
    "tailnetDnsName": Validator(suffix=".ts.net"),
    "githubToken": Validator(prefixes=("ghp_", "github_pat_")),
}

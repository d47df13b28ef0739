"""Dependency registry - non-plugin capabilities (CLI tools) and their secrets."""

from dataclasses import dataclass, field
from typing import Dict, Literal

from fleet.errors import UnknownDependencyError


@dataclass(frozen=True)
class DepSecret:
    env_var: str
    scope: Literal["agent", "global"]
    is_secret: bool = True
    validator_hint: str = ""


@dataclass(frozen=True)
class DepEntry:
    """Install metadata and secret needs of one dependency."""

    name: str
    display_name: str
    install_script: str
    secrets: Dict[str, DepSecret] = field(default_factory=dict)


DEP_REGISTRY: Dict[str, DepEntry] = {
    "gh": DepEntry(
        name="gh",
        display_name="GitHub CLI",
        install_script="type gh >/dev/null 2>&1 || apt-get install -y gh",
        secrets={
            "githubToken": DepSecret(
                env_var="GITHUB_TOKEN",
                scope="agent",
                validator_hint="must start with ghp_ or github_pat_",
            ),
        },
    ),
    "brave-search": DepEntry(
        name="brave-search",
        display_name="Brave Search",
        install_script="",
        secrets={
            "braveApiKey": DepSecret(env_var="BRAVE_API_KEY", scope="global"),
        },
    ),
}


def resolve_dep(name: str) -> DepEntry:
    """Look up a dependency, raising if the registry does not know it."""
    entry = DEP_REGISTRY.get(name)
    if entry is None:
        known = ", ".join(sorted(DEP_REGISTRY))
        raise UnknownDependencyError(f"Unknown dependency '{name}' (known: {known})")
    return entry

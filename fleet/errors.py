"""Error taxonomy for the fleet engine.

Fatal conditions are exceptions derived from ``FleetError``. Non-fatal
conditions (validator warnings, ambiguous identity matches) are plain records
that callers collect and show to the operator.
"""

from dataclasses import dataclass
from typing import List, Optional


class FleetError(Exception):
    """Base class for fatal engine errors."""


class ManifestError(FleetError):
    """The persisted fleet manifest is missing, unparseable or invalid."""


class IdentityResolutionError(FleetError):
    """An identity source could not be fetched, parsed or validated."""

    def __init__(self, reference: str, message: str):
        self.reference = reference
        super().__init__(f"Identity '{reference}': {message}")


class IdentityNotFoundError(IdentityResolutionError):
    """The identity reference does not point at anything that exists."""


class IdentityValidationError(IdentityResolutionError):
    """The identity manifest is missing required fields or has bad types."""


class UnknownDependencyError(FleetError):
    """An identity declares a dependency that is not in the dep registry."""


class TemplateVarError(FleetError):
    """Identity template variables have no value."""

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(
            "Missing template variables: " + ", ".join(self.missing)
            + ". Set them under 'templateVars' in the manifest."
        )


@dataclass
class MissingSecret:
    """One unresolved secret reference."""

    key: str
    env_var: str
    agent: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"key": self.key, "envVar": self.env_var}
        if self.agent:
            data["agent"] = self.agent
        return data


class SecretResolutionGap(FleetError):
    """Required secrets are unresolved. Carries every gap, not just the first."""

    def __init__(self, missing: List[MissingSecret], report: Optional[str] = None):
        self.missing = list(missing)
        self.report = report or "\n".join(
            f"  {m.env_var:<30}" + (f" - Agent: {m.agent}" if m.agent else " - Required")
            for m in self.missing
        )
        super().__init__(
            f"{len(self.missing)} required secret(s) missing:\n{self.report}\n"
            "Fill these in your .env file."
        )


class HookFailure(FleetError):
    """A resolve or onboard hook failed or timed out."""

    def __init__(self, agent: str, plugin: str, kind: str, error: str, remediation: str = ""):
        self.agent = agent
        self.plugin = plugin
        self.kind = kind
        self.error = error
        self.remediation = remediation
        message = f"{kind.capitalize()} hook for {plugin} ({agent}) failed: {error}"
        if remediation:
            message += f"\n{remediation}"
        super().__init__(message)


class OnboardCancelled(FleetError):
    """The operator cancelled interactive input collection."""

    def __init__(self, message: str = "Onboard cancelled by user."):
        super().__init__(message)


@dataclass
class ValidatorWarning:
    """A resolved value failed its prefix/suffix check. Never blocks resolution."""

    key: str
    message: str
    agent: Optional[str] = None

    def __str__(self) -> str:
        owner = f" ({self.agent})" if self.agent else ""
        return f"{self.key}{owner}: {self.message}"


@dataclass
class AmbiguousMatch:
    """Several agents and sources share a role, so none of them was matched by role."""

    role: str
    agents: List[str]
    references: List[str]

    def __str__(self) -> str:
        return (
            f"Role '{self.role}' is ambiguous: agents {', '.join(self.agents)} vs "
            f"identities {', '.join(self.references)}; left unmatched"
        )

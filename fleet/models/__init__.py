"""Data models for identities and fleet manifests."""

from fleet.models.identity import IdentityManifest, IdentityResult
from fleet.models.manifest import AgentDefinition, FleetManifest, ResolvedAgent

__all__ = [
    "IdentityManifest",
    "IdentityResult",
    "AgentDefinition",
    "FleetManifest",
    "ResolvedAgent",
]

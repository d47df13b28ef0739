"""Fleet manifest models - the persisted fleet.yaml document."""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from fleet.models.identity import IdentityResult


class AgentDefinition(BaseModel):
    """One fleet member as declared in the manifest.

    ``name``, ``display_name``, ``role`` and ``volume_size`` may be omitted;
    they are then taken from the agent's identity.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: Optional[str] = None
    display_name: Optional[str] = None
    role: Optional[str] = None
    identity: str = Field(..., min_length=1, description="Identity reference (path or git URL)")
    identity_version: Optional[str] = None
    volume_size: Optional[int] = Field(default=None, gt=0)
    instance_type: Optional[str] = None
    env_vars: Optional[Dict[str, str]] = None
    secrets: Optional[Dict[str, str]] = None
    plugins: Optional[Dict[str, Dict[str, Any]]] = None


class FleetManifest(BaseModel):
    """Top-level fleet manifest."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    stack_name: str = Field(..., min_length=1)
    provider: Literal["aws", "hetzner", "local"]
    region: str
    instance_type: str
    owner_name: str
    timezone: Optional[str] = None
    working_hours: Optional[str] = None
    user_notes: Optional[str] = None
    template_vars: Optional[Dict[str, str]] = None
    secrets: Optional[Dict[str, str]] = None
    agents: List[AgentDefinition] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_unique_agent_names(self):
        seen = set()
        for agent in self.agents:
            if agent.name is None:
                continue
            if agent.name in seen:
                raise ValueError(f"Duplicate agent name '{agent.name}'")
            seen.add(agent.name)
        return self

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the camelCase mapping written to fleet.yaml."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class ResolvedAgent:
    """An agent definition hydrated with its fetched identity."""

    name: str
    display_name: str
    role: str
    volume_size: int
    definition: AgentDefinition
    identity: IdentityResult
    instance_type: Optional[str] = None

    @property
    def plugins(self) -> List[str]:
        return list(self.identity.manifest.plugins)

    @property
    def deps(self) -> List[str]:
        return list(self.identity.manifest.deps)

    @property
    def required_secrets(self) -> List[str]:
        return list(self.identity.manifest.required_secrets)

    @property
    def models(self) -> List[str]:
        return self.identity.manifest.models

    @classmethod
    def from_definition(cls, definition: AgentDefinition, identity: IdentityResult) -> "ResolvedAgent":
        manifest = identity.manifest
        return cls(
            name=definition.name or f"agent-{manifest.name}",
            display_name=definition.display_name or manifest.display_name,
            role=definition.role or manifest.role,
            volume_size=definition.volume_size or manifest.volume_size,
            instance_type=definition.instance_type or manifest.instance_type,
            definition=definition,
            identity=identity,
        )

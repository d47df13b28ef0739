"""Identity manifest model - a reusable definition of one agent."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_MODEL = "anthropic/claude-opus-4-6"


class IdentityManifest(BaseModel):
    """Identity manifest loaded from identity.yaml (or identity.json)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str = Field(..., min_length=1, description="Identity name, used to derive agent-<name>")
    display_name: str = Field(..., description="Human-readable agent name")
    role: str = Field(..., min_length=1, description="Role tag, prefixes per-agent env vars")
    emoji: str
    description: str
    version: Optional[str] = None
    volume_size: int = Field(..., gt=0, description="Persistent volume size in GB")
    instance_type: Optional[str] = None
    skills: List[str]
    template_vars: List[str] = Field(..., description="Variable names the identity expects")
    plugins: List[str] = Field(default_factory=list)
    deps: List[str] = Field(default_factory=list)
    required_secrets: List[str] = Field(
        default_factory=list,
        description="Ad-hoc secret keys (camelCase) not covered by a plugin or dep",
    )
    plugin_defaults: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    model: Optional[str] = None
    backup_model: Optional[str] = None
    coding_agent: Optional[str] = None

    @property
    def models(self) -> List[str]:
        """Primary and backup model strings, primary falling back to the default."""
        models = [self.model or DEFAULT_MODEL]
        if self.backup_model:
            models.append(self.backup_model)
        return models


@dataclass(frozen=True)
class IdentityResult:
    """A fetched identity: its manifest plus every file shipped alongside it."""

    reference: str
    manifest: IdentityManifest
    files: Dict[str, str] = field(default_factory=dict, repr=False)

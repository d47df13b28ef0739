"""Identity-to-agent matcher used by manifest repair.

Reconciles identity sources found on disk with the agents already in the
manifest. Tiers run in order, each on what is still unmatched:

1. exact reference: the agent's stored identity reference equals the source's
2. derived name: the agent is named ``agent-<source identity name>``
3. unique role: exactly one unmatched agent and one unmatched source share a role

Anything ambiguous is left unmatched and reported, never guessed.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Sequence

from fleet.errors import AmbiguousMatch
from fleet.models.manifest import AgentDefinition
from fleet.services.identity_service import DiscoveredIdentity

logger = logging.getLogger(__name__)


class MatchTier(str, Enum):
    EXACT = "exact"
    DERIVED_NAME = "derived-name"
    ROLE = "role"


@dataclass
class IdentityMatch:
    agent_index: int
    source: DiscoveredIdentity
    tier: MatchTier

    @property
    def reference(self) -> str:
        return self.source.reference


@dataclass
class MatchResult:
    matches: List[IdentityMatch] = field(default_factory=list)
    unmatched_agents: List[int] = field(default_factory=list)
    orphaned: List[DiscoveredIdentity] = field(default_factory=list)
    ambiguous: List[AmbiguousMatch] = field(default_factory=list)

    def match_for(self, agent_index: int):
        return next((m for m in self.matches if m.agent_index == agent_index), None)


def _label(agent: AgentDefinition, index: int) -> str:
    return agent.name or f"agents[{index}] ({agent.identity})"


def match_identities(
    agents: Sequence[AgentDefinition],
    sources: Sequence[DiscoveredIdentity],
) -> MatchResult:
    """Match manifest agents to discovered identity sources.

    Args:
        agents: Agents eligible for matching, in manifest order
        sources: Identity sources discovered on disk

    Returns:
        MatchResult; agent entries are referenced by their index in ``agents``
    """
    result = MatchResult()
    remaining_agents: Dict[int, AgentDefinition] = OrderedDict(enumerate(agents))
    remaining_sources: List[DiscoveredIdentity] = list(sources)

    def take(index: int, source: DiscoveredIdentity, tier: MatchTier) -> None:
        result.matches.append(IdentityMatch(agent_index=index, source=source, tier=tier))
        del remaining_agents[index]
        remaining_sources.remove(source)
        logger.info(f"Matched {_label(agents[index], index)} -> {source.reference} ({tier.value})")

    # Tier 1: exact reference
    for index, agent in list(remaining_agents.items()):
        source = next((s for s in remaining_sources if s.reference == agent.identity), None)
        if source is not None:
            take(index, source, MatchTier.EXACT)

    # Tier 2: agent-<identity name>
    for index, agent in list(remaining_agents.items()):
        if not agent.name:
            continue
        source = next(
            (s for s in remaining_sources if agent.name == f"agent-{s.manifest.name}"), None
        )
        if source is not None:
            take(index, source, MatchTier.DERIVED_NAME)

    # Tier 3: unique role
    agents_by_role: Dict[str, List[int]] = OrderedDict()
    for index, agent in remaining_agents.items():
        if agent.role:
            agents_by_role.setdefault(agent.role, []).append(index)
    sources_by_role: Dict[str, List[DiscoveredIdentity]] = {}
    for source in remaining_sources:
        sources_by_role.setdefault(source.manifest.role, []).append(source)

    for role, indexes in agents_by_role.items():
        candidates = sources_by_role.get(role, [])
        if not candidates:
            continue
        if len(indexes) == 1 and len(candidates) == 1:
            take(indexes[0], candidates[0], MatchTier.ROLE)
            continue
        ambiguity = AmbiguousMatch(
            role=role,
            agents=[_label(agents[i], i) for i in indexes],
            references=[s.reference for s in candidates],
        )
        logger.warning(str(ambiguity))
        result.ambiguous.append(ambiguity)

    result.unmatched_agents = list(remaining_agents)
    result.orphaned = list(remaining_sources)
    for index in result.unmatched_agents:
        logger.warning(
            f"Agent {_label(agents[index], index)} has no identity source on disk, "
            f"keeping reference {agents[index].identity}"
        )
    for source in result.orphaned:
        logger.warning(f"Identity source {source.reference} is not used by any agent")
    return result

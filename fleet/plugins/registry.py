"""Plugin registry - resolves plugin names to capability descriptors."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from fleet.errors import IdentityValidationError
from fleet.models.identity import IdentityResult
from fleet.plugins.builtin import builtin_manifests, generic_manifest
from fleet.plugins.manifest import PluginManifest, parse_plugin_manifest

logger = logging.getLogger(__name__)


class PluginSource(str, Enum):
    """Where a registered plugin descriptor came from."""

    EXTERNAL = "external"
    BUILTIN = "builtin"


@dataclass
class PluginEntry:
    """A registered plugin descriptor."""

    manifest: PluginManifest
    source: PluginSource
    path: Optional[Path] = None
    label: str = ""

    @property
    def name(self) -> str:
        return self.manifest.name

    def to_dict(self) -> dict:
        """Summary used by the `plugins` CLI command."""
        m = self.manifest
        return {
            "name": m.name,
            "displayName": m.display_name,
            "source": self.source.value,
            "configPath": m.config_path,
            "installable": m.installable,
            "needsFunnel": m.needs_funnel,
            "secrets": {k: s.env_var for k, s in m.secrets.items()},
            "internalKeys": list(m.internal_keys),
            "hooks": {
                "resolve": sorted(m.resolve_hooks),
                "onboard": m.onboard_hook is not None,
            },
            "path": str(self.path) if self.path else None,
        }


def load_identity_plugin(identity: IdentityResult, name: str) -> Optional[PluginManifest]:
    """Return the plugin manifest bundled with an identity under plugins/<name>.*, if any."""
    for suffix in (".yaml", ".yml", ".json"):
        rel_path = f"plugins/{name}{suffix}"
        content = identity.files.get(rel_path)
        if content is None:
            continue
        try:
            return parse_plugin_manifest(content, suffix)
        except ValueError as e:
            raise IdentityValidationError(
                identity.reference, f"invalid plugin manifest {rel_path}: {e}"
            ) from e
    return None


class PluginRegistry:
    """Central registry of plugin descriptors.

    Resolution order: identity-bundled manifest, then registered entries
    (external discovery first, built-ins after), then a generic fallback.
    """

    def __init__(self, entries: Optional[Iterable[PluginEntry]] = None, include_builtin: bool = True):
        self._plugins: Dict[str, PluginEntry] = {}
        if include_builtin:
            for manifest in builtin_manifests().values():
                self._plugins[manifest.name] = PluginEntry(manifest=manifest, source=PluginSource.BUILTIN)
        for entry in entries or []:
            self.register(entry)

    def register(self, entry: PluginEntry) -> None:
        """Register a plugin entry. External entries shadow built-ins of the same name."""
        existing = self._plugins.get(entry.name)
        if existing is not None and existing.source != PluginSource.BUILTIN:
            logger.warning(f"Plugin '{entry.name}' already registered, overwriting")
        self._plugins[entry.name] = entry
        logger.info(f"Registered plugin: {entry.name} ({entry.source.value})")

    def get(self, name: str) -> Optional[PluginEntry]:
        return self._plugins.get(name)

    def get_all(self) -> List[PluginEntry]:
        return [self._plugins[name] for name in sorted(self._plugins)]

    def count(self) -> int:
        return len(self._plugins)

    def resolve(self, name: str, identity: Optional[IdentityResult] = None) -> PluginManifest:
        """Resolve a plugin name to its descriptor for a given identity."""
        if identity is not None:
            bundled = load_identity_plugin(identity, name)
            if bundled is not None:
                return bundled
        entry = self._plugins.get(name)
        if entry is not None:
            return entry.manifest
        logger.debug(f"No descriptor for plugin '{name}', using generic fallback")
        return generic_manifest(name)

"""Plugin discovery - picks up plugin manifests dropped into extra search paths.

Each search path holds one directory per plugin with a ``plugin.json`` or
``plugin.yaml`` inside. Paths are searched in order; the first manifest found
for a plugin name is kept and later ones are ignored with a warning.
"""

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from fleet.plugins.manifest import parse_plugin_manifest
from fleet.plugins.registry import PluginEntry, PluginSource

logger = logging.getLogger(__name__)


class PluginDiscovery:
    """Scans search paths for external plugin manifests."""

    MANIFEST_FILES = ("plugin.json", "plugin.yaml")

    def __init__(self, search_paths: List[Tuple[Path, str]]):
        """
        Args:
            search_paths: (path, label) tuples, searched in order
        """
        self.search_paths = search_paths

    def discover_all(self) -> List[PluginEntry]:
        found: Dict[str, PluginEntry] = {}

        for root, label in self.search_paths:
            if not root.is_dir():
                logger.debug(f"Skipping plugin path {root}: not a directory")
                continue
            for manifest_file in self._manifest_files(root):
                entry = self._load(manifest_file, label)
                if entry is None:
                    continue
                kept = found.get(entry.name)
                if kept is not None:
                    logger.warning(
                        f"Plugin '{entry.name}' at {entry.path} is shadowed by {kept.path}, ignoring it"
                    )
                    continue
                found[entry.name] = entry

        logger.info(f"Discovered {len(found)} external plugin manifest(s)")
        return list(found.values())

    def _manifest_files(self, root: Path) -> Iterator[Path]:
        for plugin_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            for name in self.MANIFEST_FILES:
                candidate = plugin_dir / name
                if candidate.is_file():
                    yield candidate
                    break

    def _load(self, manifest_file: Path, label: str) -> Optional[PluginEntry]:
        """Parse one manifest file; broken manifests are logged and skipped."""
        try:
            manifest = parse_plugin_manifest(manifest_file.read_text(encoding="utf-8"), manifest_file.suffix)
        except (OSError, ValueError) as e:
            logger.error(f"Skipping plugin manifest {manifest_file}: {e}")
            return None

        logger.debug(f"Found plugin {manifest.name} in {manifest_file.parent} ({label})")
        return PluginEntry(
            manifest=manifest,
            source=PluginSource.EXTERNAL,
            path=manifest_file.parent,
            label=label,
        )

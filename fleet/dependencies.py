"""Shared service instances for the CLI."""

import logging
from typing import Optional

from fleet.constants import PLUGIN_PATHS
from fleet.plugins.discovery import PluginDiscovery
from fleet.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

# ============================================================================
# Global service instances (singletons, exposed via functions for easier mocking)
# ============================================================================

_plugin_registry_instance: Optional[PluginRegistry] = None


def get_plugin_registry() -> PluginRegistry:
    """Get the plugin registry (singleton): built-ins plus manifests under FLEET_PLUGIN_PATHS."""
    global _plugin_registry_instance
    if _plugin_registry_instance is None:
        discovery = PluginDiscovery([(path, "external") for path in PLUGIN_PATHS])
        _plugin_registry_instance = PluginRegistry(entries=discovery.discover_all())
        logger.info(f"Created PluginRegistry instance with {_plugin_registry_instance.count()} plugin(s)")
    return _plugin_registry_instance


# Test utility function (resets all singletons)
def reset_services():
    """Reset all service instances (only for testing)."""
    global _plugin_registry_instance

    _plugin_registry_instance = None
    logger.info("Reset all service instances")

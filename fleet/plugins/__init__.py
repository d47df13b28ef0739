"""Plugin and dependency capability registry. Exports are resolved lazily."""

__all__ = [
    "PluginManifest",
    "PluginSecret",
    "PluginRegistry",
    "PluginEntry",
    "PluginSource",
    "PluginDiscovery",
    "DEP_REGISTRY",
    "resolve_dep",
    "build_deployed_config",
]


def __getattr__(name):
    if name in ("PluginManifest", "PluginSecret"):
        from fleet.plugins import manifest
        return getattr(manifest, name)
    if name in ("PluginRegistry", "PluginEntry", "PluginSource"):
        from fleet.plugins import registry
        return getattr(registry, name)
    if name == "PluginDiscovery":
        from fleet.plugins.discovery import PluginDiscovery
        return PluginDiscovery
    if name in ("DEP_REGISTRY", "resolve_dep"):
        from fleet.plugins import deps
        return getattr(deps, name)
    if name == "build_deployed_config":
        from fleet.plugins.config import build_deployed_config
        return build_deployed_config
    raise AttributeError(f"module 'fleet.plugins' has no attribute {name!r}")

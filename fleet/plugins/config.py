"""Deployed plugin config - what the provisioning backend receives per plugin."""

import copy
import logging
from typing import Any, Dict

from fleet.plugins.manifest import PluginManifest

logger = logging.getLogger(__name__)


def apply_config_transforms(manifest: PluginManifest, config: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten nested config objects according to the plugin's transform rules.

    A transform copies ``config[sourceKey][nested]`` to ``config[target]`` for
    each ``nested -> target`` pair, then drops the source key if asked to.
    """
    result = copy.deepcopy(config)
    for transform in manifest.config_transforms:
        nested = result.get(transform.source_key)
        if not isinstance(nested, dict):
            continue
        for nested_key, target_key in transform.target_keys.items():
            if nested_key in nested:
                result[target_key] = nested[nested_key]
        if transform.remove_source:
            result.pop(transform.source_key, None)
    return result


def build_deployed_config(manifest: PluginManifest, inline_config: Dict[str, Any]) -> Dict[str, Any]:
    """Build the backend-facing config section for one agent's plugin.

    Internal bookkeeping keys are never included. Secret values are not
    included either: ``secretEnv`` maps each config key to the env var the
    backend should read it from.
    """
    internal = set(manifest.internal_keys)
    visible = {k: v for k, v in inline_config.items() if k not in internal}
    config = apply_config_transforms(manifest, visible)
    secret_env = {
        key: secret.env_var
        for key, secret in manifest.secrets.items()
        if key not in internal
    }
    for key in secret_env:
        config.pop(key, None)

    if manifest.config_path == "channels":
        path = f"channels.{manifest.name}"
    else:
        path = f"plugins.entries.{manifest.name}.config"

    logger.debug(f"Deployed config for {manifest.name} at {path}: {sorted(config)}")
    return {
        "name": manifest.name,
        "path": path,
        "installable": manifest.installable,
        "needsFunnel": manifest.needs_funnel,
        "config": config,
        "secretEnv": secret_env,
    }

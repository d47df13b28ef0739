"""Built-in plugin descriptors.

All plugin-specific knowledge lives here as data. The engine consumes these
descriptors generically and never branches on a plugin name.
"""

from typing import Dict

from fleet.plugins.manifest import PluginManifest

_LINEAR_VIEWER_QUERY = (
    'curl -s -X POST https://api.linear.app/graphql '
    '-H "Authorization: $LINEAR_API_KEY" -H "Content-Type: application/json" '
    "-d '{\"query\":\"{ viewer { id } }\"}' | jq -r \".data.viewer.id\""
)

_BUILTIN_MANIFESTS = [
    {
        "name": "openclaw-linear",
        "displayName": "Linear",
        "installable": True,
        "needsFunnel": True,
        "configPath": "plugins.entries",
        "secrets": {
            "apiKey": {
                "envVar": "LINEAR_API_KEY",
                "scope": "agent",
                "isSecret": True,
                "validator": "lin_api_",
                "instructions": {
                    "title": "Linear API Key",
                    "steps": [
                        "Create a separate Linear account for each agent:",
                        "1. Invite you+agentname@domain.com to your Linear workspace",
                        "2. Go to Settings -> Security & Access -> Personal API keys -> \"New API key\"",
                        "3. Copy the key (starts with lin_api_)",
                    ],
                },
            },
            "webhookSecret": {
                "envVar": "LINEAR_WEBHOOK_SECRET",
                "scope": "agent",
                "isSecret": True,
            },
            "linearUserUuid": {
                "envVar": "LINEAR_USER_UUID",
                "scope": "agent",
                "isSecret": False,
                "required": False,
                "autoResolvable": True,
            },
        },
        "internalKeys": ["agentId", "linearUserUuid"],
        "webhookSetup": {
            "urlPath": "/hooks/linear",
            "secretKey": "webhookSecret",
            "instructions": [
                "1. Go to Linear Settings -> API -> Webhooks -> \"New webhook\"",
                "2. Paste the URL above",
                "3. Select events to receive (e.g., Issues, Comments)",
                "4. Create the webhook and copy the \"Signing secret\"",
            ],
            "configJsonPath": "plugins.entries.openclaw-linear.config.webhookSecret",
        },
        "hooks": {
            "resolve": {"linearUserUuid": _LINEAR_VIEWER_QUERY},
        },
    },
    {
        "name": "slack",
        "displayName": "Slack",
        "installable": False,
        "needsFunnel": False,
        "configPath": "channels",
        "secrets": {
            "botToken": {
                "envVar": "SLACK_BOT_TOKEN",
                "scope": "agent",
                "isSecret": True,
                "validator": "xoxb-",
                "instructions": {
                    "title": "Slack App Setup",
                    "steps": [
                        "Create a Slack app for each agent:",
                        "1. Go to https://api.slack.com/apps -> \"Create New App\" -> \"From a manifest\"",
                        "2. Go to \"OAuth & Permissions\" and copy the Bot Token (xoxb-...)",
                        "3. Under \"App-Level Tokens\", generate a connections:write token (xapp-...)",
                    ],
                },
            },
            "appToken": {
                "envVar": "SLACK_APP_TOKEN",
                "scope": "agent",
                "isSecret": True,
                "validator": "xapp-",
            },
        },
        "configTransforms": [
            {
                "sourceKey": "dm",
                "targetKeys": {"policy": "dmPolicy", "allowFrom": "allowFrom"},
                "removeSource": True,
            }
        ],
    },
]


def builtin_manifests() -> Dict[str, PluginManifest]:
    """Return fresh copies of the built-in plugin manifests keyed by name."""
    return {data["name"]: PluginManifest.model_validate(data) for data in _BUILTIN_MANIFESTS}


def generic_manifest(name: str) -> PluginManifest:
    """Fallback descriptor for plugins nobody describes: no secrets, no hooks."""
    return PluginManifest(name=name, display_name=name, installable=True)

"""Global constants for the fleet engine."""

import os
from pathlib import Path

# File names inside a fleet project
MANIFEST_FILE = "fleet.yaml"
ENV_FILE = ".env"
ENV_EXAMPLE_FILE = ".env.example"
GITIGNORE_FILE = ".gitignore"
GITIGNORE_ENTRIES = [".fleet/", ".env"]

# Identity sources
IDENTITY_MANIFEST_FILES = ("identity.yaml", "identity.json")

# Tool home (identity cache and CLI logs live here)
FLEET_HOME = Path(os.getenv("FLEET_HOME", str(Path.home() / ".fleet"))).expanduser()
IDENTITY_CACHE_DIR = FLEET_HOME / "identity-cache"
LOG_DIR = FLEET_HOME / "logs"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Hook timeouts (seconds)
ONBOARD_HOOK_TIMEOUT = int(os.getenv("FLEET_HOOK_TIMEOUT", "120"))
RESOLVE_HOOK_TIMEOUT = int(os.getenv("FLEET_RESOLVE_HOOK_TIMEOUT", "30"))

# Extra plugin manifest directories, colon-separated
PLUGIN_PATHS = [
    Path(p.strip()).expanduser()
    for p in os.getenv("FLEET_PLUGIN_PATHS", "").split(":")
    if p.strip()
]

# Deployment targets
PROVIDERS = ("aws", "hetzner", "local")

# Template variables filled from the manifest's owner fields
AUTO_TEMPLATE_VARS = {
    "OWNER_NAME": "owner_name",
    "TIMEZONE": "timezone",
    "WORKING_HOURS": "working_hours",
    "USER_NOTES": "user_notes",
}

# Defaults for a freshly scaffolded manifest
DEFAULT_STACK_NAME = "dev"
DEFAULT_PROVIDER = "aws"
DEFAULT_REGION = "us-east-1"
DEFAULT_INSTANCE_TYPE = "t3.medium"

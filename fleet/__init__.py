"""agent-fleet: manifest resolution and secret provisioning engine."""

__version__ = "0.3.0"

"""Utility helpers."""

from .redact import REDACTED, redact_secrets

__all__ = ["REDACTED", "redact_secrets"]

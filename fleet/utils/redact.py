"""Scrub secret material from text before it reaches a terminal or log.

Best-effort: known values are replaced verbatim, and common KEY=VALUE and
token shapes are masked. Encoded or otherwise transformed copies of a secret
are not detected.
"""

import re
from typing import Iterable

REDACTED = "[REDACTED]"

# Values shorter than this are too likely to collide with ordinary words
MIN_SECRET_LENGTH = 4

_KEY_VALUE_RE = re.compile(
    r"\b([A-Z0-9_]*(?:TOKEN|SECRET|API_KEY|KEY|PASS|PASSWORD)[A-Z0-9_]*)\b\s*=\s*"
    r"(?:\"[^\"]*\"|'[^']*'|[^\s]+)",
    re.IGNORECASE,
)

_TOKEN_PATTERNS = [
    (re.compile(r"\bxoxb-[0-9A-Za-z-]+\b"), "xoxb-" + REDACTED),
    (re.compile(r"\bxapp-[0-9A-Za-z-]+\b"), "xapp-" + REDACTED),
    (re.compile(r"\bxoxe-[0-9A-Za-z-]+\b"), "xoxe-" + REDACTED),
    (re.compile(r"\blin_api_[0-9A-Za-z]+\b"), "lin_api_" + REDACTED),
    (re.compile(r"\bghp_[0-9A-Za-z]{20,}\b"), "ghp_" + REDACTED),
    (re.compile(r"\bgithub_pat_[0-9A-Za-z_]{20,}\b"), "github_pat_" + REDACTED),
    (re.compile(r"\bsk-[0-9A-Za-z-]{20,}\b"), "sk-" + REDACTED),
    (re.compile(r"\btskey-[0-9A-Za-z-]+\b"), "tskey-" + REDACTED),
]


def redact_secrets(text: str, known_values: Iterable[str] = ()) -> str:
    """Replace known secret values and secret-shaped tokens with a placeholder."""
    if not text:
        return text

    values = sorted(
        {v for v in known_values if v and len(v) >= MIN_SECRET_LENGTH},
        key=len,
        reverse=True,
    )
    out = text
    for value in values:
        out = out.replace(value, REDACTED)

    out = _KEY_VALUE_RE.sub(lambda m: f"{m.group(1)}={REDACTED}", out)
    for pattern, replacement in _TOKEN_PATTERNS:
        out = pattern.sub(replacement, out)
    return out

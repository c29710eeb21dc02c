"""Secret masking for structured log output.

Log records from the vault tooling carry paths, counts and addresses. Values
under sensitive keys (tokens, unseal keys, secret values) and anything shaped
like a store token are masked before a line is written.
"""

from __future__ import annotations

import re
from typing import Any

MASK = "***"

# Service tokens (hvs.), batch tokens (hvb.), recovery tokens (hvr.) and legacy s. tokens
TOKEN_PATTERN = re.compile(r"\b(?:hv[sbr]|s)\.[A-Za-z0-9_-]{8,}\b")

SENSITIVE_KEYS = frozenset(
    {
        "token",
        "root_token",
        "vault_token",
        "keys",
        "keys_base64",
        "unseal_key",
        "key",
        "secret",
        "secret_value",
        "value",
        "password",
    }
)


def mask_token(token: str) -> str:
    """Keep the token type prefix only (``hvs.***``)."""
    prefix, _, _ = token.partition(".")
    return f"{prefix}.{MASK}"


def sanitize_text(text: str) -> str:
    """Mask every store token embedded in a string."""
    return TOKEN_PATTERN.sub(lambda m: mask_token(m.group(0)), text)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return lowered in SENSITIVE_KEYS or lowered.endswith("_token")


def sanitize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return sanitize_dict(value)
    if isinstance(value, list | tuple):
        return type(value)(sanitize_value(item) for item in value)
    if isinstance(value, str):
        return sanitize_text(value)
    return value


def sanitize_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively mask sensitive keys and embedded tokens.

    Example:
        >>> sanitize_dict({"secret_path": "dev/API_KEY", "root_token": "hvs.abcdefghij"})
        {'secret_path': 'dev/API_KEY', 'root_token': '***'}
    """
    return {
        key: MASK if _is_sensitive(str(key)) else sanitize_value(value)
        for key, value in data.items()
    }

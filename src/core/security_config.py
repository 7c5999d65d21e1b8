"""Redaction rules for structured logs and the error envelope.

Field names are compared after lower-casing and turning `-` into `_`, so
`X-Api-Key` and `x_api_key` are the same field. A field is secret when its
name is listed exactly or ends with a listed suffix; usage fields such as
`input_tokens` and `max_tokens` are never caught by a bare substring.
"""

import re
from collections.abc import Mapping
from typing import Any


REDACTED = "[REDACTED]"

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "set_cookie",
        "password",
        "secret",
        "secret_key",
        "api_key",
        "access_token",
        "refresh_token",
        "jwt",
        "bearer",
        "credential",
        "credentials",
        "email",
        "phone",
    }
)

# anthropic_api_key, x_goog_api_key, provider_credential, user_email ...
SENSITIVE_SUFFIXES: tuple[str, ...] = (
    "_api_key",
    "_secret",
    "_password",
    "_access_token",
    "_auth_token",
    "_refresh_token",
    "_credential",
    "_email",
)

# Provider keys that end up inside free text (exception messages, vendor errors).
SECRET_VALUE_PATTERN = re.compile(
    r"\b(?:sk-ant-[\w-]{8,}|sk-(?:proj-)?[\w-]{16,}|gsk_\w{16,}|AIza[\w-]{30,})"
)

# Error fields shown in every environment; anything else is diagnostic.
PUBLIC_ERROR_FIELDS: frozenset[str] = frozenset({"correlation_id", "type"})
DIAGNOSTIC_ERROR_FIELDS: frozenset[str] = frozenset(
    {"details", "traceback", "exception_type", "validation_errors"}
)


def normalize_key(key: str) -> str:
    return key.strip().lower().replace("-", "_")


def is_sensitive_key(key: str) -> bool:
    """True when a log field of this name must never be written in clear."""
    name = normalize_key(key)
    return name in SENSITIVE_KEYS or name.endswith(SENSITIVE_SUFFIXES)


def scrub_secrets(text: str) -> str:
    """Mask provider API keys that appear inside free text."""
    return SECRET_VALUE_PATTERN.sub(REDACTED, text)


def redact_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of `fields` with secret fields masked, recursing into containers."""
    return {
        key: REDACTED if is_sensitive_key(key) else _redact_value(value)
        for key, value in fields.items()
    }


def _redact_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return redact_fields(value)
    if isinstance(value, list | tuple):
        return [_redact_value(item) for item in value]
    if isinstance(value, str):
        return scrub_secrets(value)
    return value


def allowed_error_fields(environment: str) -> frozenset[str]:
    """Error envelope fields the given environment may expose."""
    if environment == "production":
        return PUBLIC_ERROR_FIELDS
    return PUBLIC_ERROR_FIELDS | DIAGNOSTIC_ERROR_FIELDS

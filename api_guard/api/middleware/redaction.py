"""
Redaction helpers shared by the audit recorder.

Two independent masks are applied before anything is persisted:

- sanitize_data: replaces the values of configured sensitive field names at
  the top level of a payload. Lists are mapped element-wise. Keys nested
  inside another object are left as-is; redaction is deliberately shallow.
- redact_sensitive_headers: masks credential-bearing HTTP headers by name
  pattern, independent of the configured field set.

Pattern: Security - prevent credential leakage in logs
"""

from typing import Any, Iterable, Mapping


REDACTION_MARKER = "[REDACTED]"

# Header name fragments that always carry credentials
SENSITIVE_HEADER_PATTERNS = [
    "authorization",
    "api-key",
    "apikey",
    "x-api-key",
    "api_key",
    "x-auth-token",
    "cookie",
    "set-cookie",
]


def sanitize_data(data: Any, sensitive_fields: Iterable[str]) -> Any:
    """
    Replace top-level sensitive values with the redaction marker.

    Args:
        data: A mapping, a list of payloads, or any scalar.
        sensitive_fields: Exact key names to redact.

    Returns:
        A sanitized shallow copy. Scalars and empty values are returned
        unchanged; the input is never mutated.

    Example:
        >>> sanitize_data({"email": "a@b.c", "password": "x"}, ["password"])
        {'email': 'a@b.c', 'password': '[REDACTED]'}
    """
    if not data:
        return data

    fields = frozenset(sensitive_fields)

    if isinstance(data, (list, tuple)):
        return [sanitize_data(item, fields) for item in data]

    if isinstance(data, Mapping):
        return {
            key: REDACTION_MARKER if key in fields else value
            for key, value in data.items()
        }

    return data


def redact_sensitive_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Mask headers whose name contains any credential pattern."""
    redacted = {}
    for key, value in headers.items():
        key_lower = key.lower()
        is_sensitive = any(pattern in key_lower for pattern in SENSITIVE_HEADER_PATTERNS)
        redacted[key] = REDACTION_MARKER if is_sensitive else value
    return redacted

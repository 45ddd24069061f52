"""Secret redaction for safe logging and error messages.

Bot sessions carry bearer tokens and auth hints carry plaintext
passwords; neither may reach a log line or an exception message.
Key matching is case-insensitive substring matching.
"""

import re

_DEFAULT_SENSITIVE_PATTERNS = frozenset({
    "secret", "token", "authorization", "password", "credential", "api_key",
})

# Keys whose entire value is redacted regardless of content type
_CONTAINER_KEYS = frozenset({"headers", "auth"})

_REDACTED = "***REDACTED***"


def _is_sensitive_key(key: str, sensitive_patterns: frozenset[str]) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in sensitive_patterns)


def redact_for_logging(
    obj: dict,
    sensitive_patterns: frozenset[str] = _DEFAULT_SENSITIVE_PATTERNS,
) -> dict:
    """Return a copy of ``obj`` with sensitive values replaced.

    Handles nested dicts and lists of dicts recursively. Empty values
    are kept as-is so "no token" stays distinguishable in logs.
    """
    result = {}
    for key, value in obj.items():
        if key.lower() in _CONTAINER_KEYS:
            result[key] = _REDACTED
        elif _is_sensitive_key(key, sensitive_patterns):
            result[key] = _REDACTED if value else value
        elif isinstance(value, dict):
            result[key] = redact_for_logging(value, sensitive_patterns)
        elif isinstance(value, list):
            result[key] = [
                redact_for_logging(item, sensitive_patterns) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


_SENSITIVE_KEYWORDS = (
    r"secret|token|password|api_key|access_token|refresh_token|authorization|credential"
)
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    r"(?:Bearer|Basic)\s+[A-Za-z0-9._~+/=-]+"
    r"|"
    r'"(?:' + _SENSITIVE_KEYWORDS + r')"\s*:\s*"[^"]*"'
    r"|"
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\"[^\"]*\""
    r"|"
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\S+"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 500) -> str | None:
    """Redact secret-looking fragments of a free-text message and truncate it."""
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized

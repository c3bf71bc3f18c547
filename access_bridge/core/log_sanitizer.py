"""
Redaction of credentials from log output and echoed configuration.

sanitize_message() applies regex redaction to free text; sanitize_mapping()
deep-copies a dict/list, blanking values whose key looks sensitive.
SanitizingFilter plugs sanitize_message() into the logging pipeline.
"""

import logging
import re
from typing import Any, List, Pattern, Tuple

REDACTED = "[REDACTED]"

_PATTERNS: List[Tuple[Pattern[str], str]] = [
    # API keys
    (re.compile(r"api[_-]?key['\"]?\s*[:=]\s*['\"]?[A-Za-z0-9_\-]{20,}", re.I), "api_key: [REDACTED]"),
    (re.compile(r"X-API-KEY:\s*[A-Za-z0-9_\-]{20,}", re.I), "X-API-KEY: [REDACTED]"),
    # Passwords
    (re.compile(r"(password|passwd|pwd)['\"]?\s*[:=]\s*['\"]?[^'\",\s]{6,}", re.I), r"\1: [REDACTED]"),
    # Tokens
    (re.compile(r"Authorization:\s*Bearer\s+[A-Za-z0-9_\-\.]{20,}", re.I), "Authorization: Bearer [REDACTED]"),
    (re.compile(r"Bearer\s+[A-Za-z0-9_\-\.]{20,}", re.I), "Bearer [REDACTED]"),
    (re.compile(r"token['\"]?\s*[:=]\s*['\"]?[A-Za-z0-9_\-\.]{20,}", re.I), "token: [REDACTED]"),
    (re.compile(r"eyJ[A-Za-z0-9_\-]*\.eyJ[A-Za-z0-9_\-]*\.[A-Za-z0-9_\-]*"), "[REDACTED-JWT]"),
    # Credential e-mails
    (re.compile(r"email['\"]?\s*[:=]\s*['\"]?[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", re.I), "email: [REDACTED]"),
    # Secrets
    (re.compile(r"secret(key)?['\"]?\s*[:=]\s*['\"]?[A-Za-z0-9_\-]{20,}", re.I), "secret: [REDACTED]"),
    (
        re.compile(
            r"-----BEGIN\s+(?:RSA\s+)?PRIVATE\s+KEY-----[\s\S]*?-----END\s+(?:RSA\s+)?PRIVATE\s+KEY-----",
            re.I,
        ),
        "[REDACTED-PRIVATE-KEY]",
    ),
    # Connection strings with embedded credentials
    (re.compile(r"(mongodb|mysql|postgresql|postgres|redis|https?)://[^:/\s]+:[^@/\s]+@", re.I), r"\1://[REDACTED]:[REDACTED]@"),
]

_SENSITIVE_KEYS = (
    "password",
    "passwd",
    "pwd",
    "secret",
    "apikey",
    "api_key",
    "token",
    "privatekey",
    "private_key",
    "credential",
    "encryptionkey",
    "encryption_key",
)


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_KEYS)


def sanitize_message(message: str) -> str:
    if not message:
        return message
    for pattern, replacement in _PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def sanitize_mapping(value: Any) -> Any:
    """Deep copy with sensitive keys redacted and strings pattern-scrubbed."""
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if isinstance(key, str) and is_sensitive_key(key):
                result[key] = None if item is None else (REDACTED if item != "" else "")
            else:
                result[key] = sanitize_mapping(item)
        return result
    if isinstance(value, (list, tuple)):
        return [sanitize_mapping(item) for item in value]
    if isinstance(value, str):
        return sanitize_message(value)
    return value


def mask_string(value: str, visible_chars: int = 4) -> str:
    """Keep the first/last characters, e.g. for partially logging identifiers."""
    if not value or len(value) <= visible_chars * 2:
        return "[MASKED]"
    hidden = "*" * max(8, len(value) - visible_chars * 2)
    return f"{value[:visible_chars]}{hidden}{value[-visible_chars:]}"


class SanitizingFilter(logging.Filter):
    """Rewrites each record's message with credentials redacted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = sanitize_message(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True

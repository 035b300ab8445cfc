"""
Security Logging Utilities for Game Deals
Prevents log injection (CWE-117) when request supplied values reach the logs.

Usernames, ids and resource paths all come from request bodies or URLs, so
they are stripped of control characters and truncated before interpolation.
"""

import re
from typing import Any, Iterable, Optional

# Patterns for detecting potentially malicious content
LOG_INJECTION_PATTERNS = [
    r"[\r\n]",  # CRLF injection
    r"%0[ad]",  # URL-encoded CRLF
    r"\\[rn]",  # Escaped newlines
    r"\x00",  # Null bytes
    r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]",  # Control characters
]

SAFE_LOG_PATTERN = re.compile(r"^[a-zA-Z0-9._@\-\s]+$")
SAFE_URI_PATTERN = re.compile(r"[^a-zA-Z0-9._@\-:/#*]")


def sanitize_for_log(value: Optional[Any], max_length: int = 100, allow_special: bool = False) -> str:
    """
    Sanitize any value for safe logging.

    Args:
        value: Value to sanitize
        max_length: Maximum length of output
        allow_special: Whether to allow some special characters

    Returns:
        str: Sanitized string safe for logging
    """
    if value is None:
        return "null"

    str_value = str(value)

    if len(str_value) > max_length:
        str_value = str_value[:max_length] + "..."

    for pattern in LOG_INJECTION_PATTERNS:
        str_value = re.sub(pattern, "", str_value)

    if not allow_special and not SAFE_LOG_PATTERN.match(str_value):
        str_value = re.sub(r"[^a-zA-Z0-9._@\-\s]", "", str_value)

    if not str_value.strip():
        return "[sanitized]"

    return str_value.strip()


def sanitize_username_for_log(username: Optional[str]) -> str:
    if not username:
        return "[no_username]"
    return sanitize_for_log(username, max_length=50)


def sanitize_id_for_log(id_value: Optional[Any]) -> str:
    """
    Sanitize ID values for logging.

    Numeric ids pass through, anything else is sanitized.
    """
    if id_value is None:
        return "[no_id]"

    str_id = str(id_value)
    if str_id.isdigit():
        return str_id

    return sanitize_for_log(str_id, max_length=50)


def sanitize_uri_for_log(uri: Optional[Any]) -> str:
    """
    Sanitize a resource URI (``gamedeals://kind/path#action``) for logging.

    Keeps the characters URIs are built from and drops everything else.
    """
    if uri is None:
        return "[no_uri]"

    str_uri = sanitize_for_log(uri, max_length=200, allow_special=True)
    return SAFE_URI_PATTERN.sub("", str_uri) or "[sanitized]"


def sanitize_error_message_for_log(error_msg: Optional[Any]) -> str:
    """Redact credentials and tokens from an error message before logging it."""
    if not error_msg:
        return "[no_error_message]"

    str_msg = str(error_msg)

    sensitive_patterns = [
        (r"password[=:\s]+[^\s]+", "password=[REDACTED]"),
        (r"token[=:\s]+[^\s]+", "token=[REDACTED]"),
        (r"secret[=:\s]+[^\s]+", "secret=[REDACTED]"),
        (r"eyJ[a-zA-Z0-9_\-]+\.[a-zA-Z0-9_\-]+\.[a-zA-Z0-9_\-]+", "[JWT_REDACTED]"),
    ]

    for pattern, replacement in sensitive_patterns:
        str_msg = re.sub(pattern, replacement, str_msg, flags=re.IGNORECASE)

    return sanitize_for_log(str_msg, max_length=500, allow_special=True)


def create_authorization_log_entry(
    subject: Any,
    requirements: Iterable[Any],
    allowed: bool,
    endpoint: Optional[str] = None,
    reason: Optional[str] = None,
) -> str:
    """
    Create a standardized authorization decision log entry.

    Args:
        subject: Subject URI the decision was made for
        requirements: Enriched URIs (``uri#action``) that were checked
        allowed: The decision
        endpoint: "METHOD /path" of the request, when known
        reason: Internal reason for a denial, never sent to the client

    Returns:
        str: Formatted log entry
    """
    parts = [
        f"decision={'allow' if allowed else 'deny'}",
        f"subject={sanitize_uri_for_log(subject)}",
        "requirements=[" + ", ".join(sanitize_uri_for_log(r) for r in requirements) + "]",
    ]

    if endpoint:
        parts.append(f"endpoint={sanitize_for_log(endpoint, max_length=200, allow_special=True)}")

    if reason and not allowed:
        parts.append(f"reason={sanitize_error_message_for_log(reason)}")

    return " | ".join(parts)

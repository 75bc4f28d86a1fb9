"""
Log sanitization utilities to prevent credential leakage.

SDK and REST errors raised while creating child work items can echo request
headers or connection strings back. Everything written to the diagnostic log
or returned to the caller as an error message goes through here first.
"""

import json
import re
from typing import Any


# key=value or key: value pairs whose value must never reach a log
SENSITIVE_KEYS = ('password', 'client_secret', 'token', 'pat', 'authorization')

# Bearer values are redacted before the authorization key would hide them
SENSITIVE_PATTERNS = [
    (re.compile(r'(bearer\s+)([a-zA-Z0-9\-._~+/]+=*)', re.IGNORECASE), r'\1***REDACTED***'),
] + [
    (re.compile(rf'({key}["\']?\s*[:=]\s*["\']?)([^"\'\s]+)', re.IGNORECASE), r'\1***REDACTED***')
    for key in SENSITIVE_KEYS
]


def sanitize_log_message(message: str) -> str:
    """
    Sanitize a log message by redacting sensitive information.

    Args:
        message: The log message to sanitize

    Returns:
        Sanitized log message with sensitive data redacted
    """
    if not message:
        return message

    sanitized = message
    for pattern, replacement in SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)

    return sanitized


def format_error(error: Any) -> str:
    """
    Turn any raised value into a readable, sanitized message.

    Exceptions use their message (falling back to the class name when the
    message is empty); anything else is JSON-encoded when possible.

    Args:
        error: Exception or arbitrary error payload

    Returns:
        Sanitized error message
    """
    if isinstance(error, BaseException):
        text = str(error) or type(error).__name__
    elif isinstance(error, str):
        text = error
    else:
        try:
            text = json.dumps(error, default=str)
        except (TypeError, ValueError):
            text = str(error)

    return sanitize_log_message(text)


def sanitize_error(error: Exception) -> str:
    """
    Sanitize an exception message for safe logging.

    Args:
        error: The exception to sanitize

    Returns:
        Sanitized error message
    """
    return format_error(error)


def safe_log_error(error: Exception, context: str = "") -> str:
    """
    Create a safe error message for logging.

    Args:
        error: The exception
        context: Additional context (e.g., "Authentication failed")

    Returns:
        Safe error message for logging
    """
    sanitized_error = sanitize_error(error)
    error_type = type(error).__name__

    if context:
        return f"{context}: {error_type}: {sanitized_error}"
    return f"{error_type}: {sanitized_error}"

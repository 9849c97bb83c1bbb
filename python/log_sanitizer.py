"""
Shared log sanitization helpers for the Electricity Billing Service

User-supplied values (paths, emails, national IDs) reach several log
streams: the request log, the security log and the repository debug log.
These helpers keep them on a single line and out of the log verbatim.
"""

import re

MAX_LOG_LENGTH = 500


def sanitize_for_logging(text: str) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    # Remove newlines, carriage returns, and other control characters
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    # Collapse multiple spaces
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    return sanitized[:MAX_LOG_LENGTH]


def mask_email(email: str) -> str:
    """Mask the local part of an email address for logging

    Example:
        >>> mask_email("jane.doe@example.com")
        'j***@example.com'
    """
    if not email:
        return ''
    email = sanitize_for_logging(email)
    local, sep, domain = email.partition('@')
    if not sep:
        return '***'
    return f"{local[:1]}***@{domain}"


def mask_identifier(value: str, visible: int = 2) -> str:
    """Keep only the last `visible` characters of a document number."""
    if not value:
        return ''
    value = sanitize_for_logging(value)
    if len(value) <= visible:
        return '*' * len(value)
    return '*' * (len(value) - visible) + value[-visible:]

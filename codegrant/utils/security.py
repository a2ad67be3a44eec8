"""Security utilities for log sanitization and secret handling.

This module provides functions to prevent security vulnerabilities:
- Log injection: Sanitize provider-supplied input before logging
- Sensitive data exposure: Mask secrets, codes and tokens in logs
- Token lookup: Derive a stable digest so raw access tokens are never stored
"""

import hashlib
import re
from typing import Union


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Remove newlines and control characters from log messages.

    Prevents log injection attacks where attackers inject newlines or control
    characters to corrupt log files, hide malicious activity, or break log parsing.
    Callback query parameters and provider names arrive from the visitor's
    browser and must pass through here before being logged.

    Args:
        msg: Message to sanitize (will be converted to string)

    Returns:
        Sanitized message with control characters removed

    Examples:
        >>> sanitize_log_message("google\\nINFO fake entry")
        'googleINFO fake entry'
    """
    if msg is None:
        return ""

    msg_str = str(msg)

    # Pattern matches: \n, \r, \t, and control chars (0x00-0x1f, 0x7f-0x9f)
    return re.sub(r'[\n\r\t\x00-\x1f\x7f-\x9f]', '', msg_str)


def mask_sensitive(value: Union[str, None], visible_chars: int = 4, mask_char: str = "*") -> str:
    """Mask sensitive values, showing only the last N characters.

    Args:
        value: Sensitive value to mask (client secrets, codes, tokens)
        visible_chars: Number of characters to show at the end (default: 4)
        mask_char: Character to use for masking (default: "*")

    Returns:
        Masked string showing only last visible_chars characters

    Examples:
        >>> mask_sensitive("ya29.a0AfH6SMBx1234")
        '***1234'
        >>> mask_sensitive("abc")
        '***'
        >>> mask_sensitive(None)
        '***'
    """
    if not value:
        return mask_char * 3

    # For very short values, mask completely
    if len(value) <= visible_chars:
        return mask_char * 3

    return f"{mask_char * 3}{value[-visible_chars:]}"


def state_prefix(state: Union[str, None], length: int = 16) -> str:
    """Return a sanitized prefix of a state value for correlating log lines."""
    return sanitize_log_message((state or "")[:length])


def token_digest(access_token: str) -> str:
    """SHA-256 hex digest of an access token.

    Sessions are looked up by this digest, so a leaked database never
    exposes usable bearer tokens.
    """
    return hashlib.sha256(access_token.encode("utf-8")).hexdigest()

"""Security utilities for log and response hygiene.

This module provides functions to prevent security vulnerabilities:
- Log injection: Sanitize untrusted input (remote error bodies, request values) before logging
- Sensitive data exposure: Mask secret values in logs/responses
"""

import re
from typing import Union, Optional

# Remote error bodies can be arbitrarily large HTML pages
MAX_REMOTE_BODY_LENGTH = 500


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Remove newlines and control characters from log messages.

    Prevents log injection where a remote API or request value carries
    newlines or control characters that corrupt log files.

    Args:
        msg: Message to sanitize (will be converted to string)

    Returns:
        Sanitized message with control characters removed

    Examples:
        >>> sanitize_log_message("pve1\\nmalicious\\nlog")
        'pve1maliciouslog'
    """
    if msg is None:
        return ""

    if isinstance(msg, bytes):
        msg_str = msg.decode("utf-8", errors="replace")
    else:
        msg_str = str(msg)

    return re.sub(r'[\n\r\t\x00-\x1f\x7f-\x9f]', '', msg_str)


def truncate_remote_body(body: Optional[str], limit: int = MAX_REMOTE_BODY_LENGTH) -> str:
    """Sanitize and shorten a remote response body for errors and logs."""
    cleaned = sanitize_log_message(body)
    if len(cleaned) > limit:
        return cleaned[:limit] + "..."
    return cleaned


def mask_sensitive(value: Union[str, None], visible_chars: int = 4, mask_char: str = "*") -> str:
    """Mask sensitive values, showing only the last N characters.

    Args:
        value: Sensitive value to mask (API keys, tokens, passwords, etc.)
        visible_chars: Number of characters to show at the end (default: 4)
        mask_char: Character to use for masking (default: "*")

    Returns:
        Masked string showing only last visible_chars characters

    Examples:
        >>> mask_sensitive("tok_live_1234567890abcdef")
        '***cdef'
        >>> mask_sensitive("abc", visible_chars=4)
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

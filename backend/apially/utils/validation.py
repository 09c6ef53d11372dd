"""
Input Validation Utilities
===========================

Common validation functions for API keys, Dropbox settings and user inputs.

Author: ApiAlly Team
"""

import re


API_KEY_PATTERN = re.compile(r'^[0-9a-f]{32}$')
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def validate_api_key(api_key: str) -> bool:
    """
    Validate a source API key (32 lowercase hex characters).

    Args:
        api_key: Key string as generated by secrets.token_hex(16)

    Returns:
        True if valid format, False otherwise
    """
    return bool(api_key and API_KEY_PATTERN.match(api_key))


def validate_email(email: str) -> bool:
    """Loose email check: something@something.tld, no whitespace."""
    return bool(email and EMAIL_PATTERN.match(email.strip()))


def validate_dropbox_path(path: str) -> bool:
    """
    Dropbox folder paths are absolute ("/ApiAlly/backups").

    The root folder itself is "/".
    """
    return bool(path) and path.startswith("/")

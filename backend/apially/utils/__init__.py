"""
Utility modules for the ApiAlly backend.
"""

from apially.utils.validation import (
    validate_api_key,
    validate_email,
    validate_dropbox_path,
)

__all__ = [
    "validate_api_key",
    "validate_email",
    "validate_dropbox_path",
]

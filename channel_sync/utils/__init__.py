"""
Utility modules for the channel sync engine
"""

from .logging import get_safe_logger, configure_logging, sanitize_url
from .crypto import CredentialCipher
from .timeutils import utcnow, as_utc

__all__ = [
    "get_safe_logger",
    "configure_logging",
    "sanitize_url",
    "CredentialCipher",
    "utcnow",
    "as_utc",
]

"""Infrastructure components for Autoreply.

This package contains infrastructure-level components like:
- Token encryption at rest
"""

from autoreply_core.infrastructure.crypto import (
    CryptoService,
    DecryptionError,
    InvalidKeyError,
    mask_secret,
)

__all__ = [
    "CryptoService",
    "DecryptionError",
    "InvalidKeyError",
    "mask_secret",
]

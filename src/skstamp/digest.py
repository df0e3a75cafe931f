"""Digest and hash algorithm checks.

Pure functions, no I/O. The service runs them before touching OpenSSL or
the network so that malformed input fails fast with a clear message.
"""

import re

from .errors import DigestValidationError

# Digest algorithms accepted by ``openssl ts -query``.
SUPPORTED_ALGORITHMS: frozenset[str] = frozenset(
    {
        "sha",
        "sha1",
        "mdc2",
        "ripemd160",
        "sha224",
        "sha256",
        "sha384",
        "sha512",
        "md2",
        "md4",
        "md5",
        "dss1",
    }
)

_HEX_DIGEST = re.compile(r"[0-9A-F]+", re.IGNORECASE)


def normalize_algorithm(name: str) -> str:
    """Normalize an algorithm name: ``-sha256``, ``sha-256`` and ``SHA-256`` become ``sha256``."""
    return name.replace("-", "").lower()


def is_supported_algorithm(name: str) -> bool:
    return normalize_algorithm(name) in SUPPORTED_ALGORITHMS


def is_valid_digest(digest: str) -> bool:
    """Return True if ``digest`` is a non-empty hex string (any case)."""
    return isinstance(digest, str) and _HEX_DIGEST.fullmatch(digest) is not None


def require_algorithm(name: str) -> str:
    """Normalize ``name`` and make sure OpenSSL understands it.

    Returns:
        The normalized algorithm name.

    Raises:
        DigestValidationError: If the algorithm is not supported.
    """
    normalized = normalize_algorithm(name)
    if not is_supported_algorithm(normalized):
        raise DigestValidationError(f"Unknown digest format: {name}")
    return normalized


def require_digest(digest: str) -> str:
    """Return ``digest`` unchanged, or raise :class:`DigestValidationError`."""
    if not is_valid_digest(digest):
        raise DigestValidationError(f"Invalid digest: {digest}")
    return digest

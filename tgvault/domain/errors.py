"""Error taxonomy for the encrypted object store.

Every failure in the core is raised as one of these types; nothing is logged
or swallowed below the HTTP boundary. Transport failures live next to the
transport protocol in ``tgvault.infra.transport.client``.
"""

from __future__ import annotations


class VaultError(Exception):
    """Base class for all object store failures."""


class MalformedIDError(VaultError):
    """Raised when a public ID cannot be decoded into a locator.

    Raised before any remote call is attempted.
    """


class IntegrityError(VaultError):
    """Raised when authenticated decryption fails.

    No plaintext, partial or otherwise, accompanies this error.
    """


class UnsupportedVersionError(VaultError):
    """Raised when a payload carries a cipher version this build cannot handle."""

    def __init__(self, version: int) -> None:
        super().__init__(f"Unsupported cipher version: {version}")
        self.version = version


class TruncatedObjectError(VaultError):
    """Raised when reassembled chunks do not add up to the recorded length."""

    def __init__(self, *, expected: int, actual: int) -> None:
        super().__init__(
            f"Reassembled object has {actual} bytes, expected {expected}"
        )
        self.expected = expected
        self.actual = actual


class RateLimitedError(VaultError):
    """Raised when a client has exhausted its request budget."""

    def __init__(self, client_key: str, *, retry_after: int) -> None:
        super().__init__(f"Rate limit exceeded for {client_key}")
        self.client_key = client_key
        self.retry_after = retry_after

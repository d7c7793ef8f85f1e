"""
Exception hierarchy for payware-mcp.

Every error raised by this package derives from ``PaywareError`` so that the
tool layer can turn it into an error result without catching unrelated bugs.
"""

from typing import Any, Optional


class PaywareError(Exception):
    """Base exception for payware-mcp errors."""

    pass


class ConfigurationError(PaywareError):
    """Raised when a required identity or environment setting is missing or invalid."""

    pass


class KeyLoadError(PaywareError):
    """Raised when private or public key material is missing, unreadable or malformed."""

    pass


class SerializationError(PaywareError):
    """Raised when a request body cannot be expressed as canonical JSON."""

    pass


class TokenFormatError(PaywareError):
    """Raised when a token is not a well-formed three-part JWS."""

    pass


class OperationError(PaywareError, ValueError):
    """Raised when tool arguments fail validation before any request is signed."""

    pass


class ApiError(PaywareError):
    """
    Raised when the payware API rejects a request or cannot be reached.

    Attributes:
        status_code: HTTP status, or None for transport failures.
        code: payware error code from the response body (e.g. ``ERR_INVALID_CONTENT_HASH``).
        details: Decoded response body, when there was one.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.details = details

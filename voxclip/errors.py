"""
Exception taxonomy for voxclip.

ConfigurationError is raised before any resource is acquired. ProviderError
subclasses name the exact failure kind so callers can tell a dropped
connection from a rejected request.
"""

from typing import Optional


class VoxclipError(Exception):
    """Base exception for voxclip errors."""


class ConfigurationError(VoxclipError):
    """Configuration is missing, invalid or ambiguous."""


class LockError(VoxclipError):
    """The lock file could not be read, written or removed."""


class CaptureError(VoxclipError):
    """Audio capture could not start or ended abnormally."""


class DeliveryError(VoxclipError):
    """No destination tool could accept the transcribed text."""


class ProviderError(VoxclipError):
    """
    A transcription request failed.

    Attributes:
        provider: Provider name that raised the error
        status: HTTP status code, when the server answered
        attempts: Number of attempts made before giving up
    """

    kind = "provider"

    def __init__(
        self,
        message: str,
        provider: str = "",
        status: Optional[int] = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.provider = provider
        self.status = status
        self.attempts = attempts


class NetworkError(ProviderError):
    """Connection or TLS-layer failure (no response received)."""

    kind = "network"


class ProviderTimeoutError(ProviderError):
    """The request timed out waiting for the server."""

    kind = "timeout"


class ServerError(ProviderError):
    """The server answered with a 5xx status."""

    kind = "server_error"


class AuthError(ProviderError):
    """The server rejected the credential (401/403)."""

    kind = "auth"


class ClientError(ProviderError):
    """The server rejected the request (other 4xx)."""

    kind = "client_error"


class EmptyResultError(ProviderError):
    """The server answered but the transcription was empty."""

    kind = "empty_result"

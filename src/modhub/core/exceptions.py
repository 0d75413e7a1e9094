"""Custom exception hierarchy for modhub.

Provides specific exception types for different error categories,
enabling callers to tell routine control flow (cancellation) apart
from genuine failures.
"""

from __future__ import annotations

from typing import Any


class ModhubException(Exception):
    """Base exception for all modhub errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(ModhubException):
    """Exception for invalid input values."""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class ConfigException(ModhubException):
    """Exception for configuration errors."""

    pass


# =============================================================================
# WEB OF TRUST
# =============================================================================


class TrustComputationError(ModhubException):
    """Raised when the root's own follow list cannot be fetched."""

    def __init__(self, message: str, pubkey: str | None = None):
        super().__init__(message, {"pubkey": pubkey} if pubkey else None)
        self.pubkey = pubkey


# =============================================================================
# AGGREGATION SERVER
# =============================================================================


class ServerError(ModhubException):
    """Base exception for aggregation server errors."""

    pass


class InvalidServerUrlError(ServerError):
    """Raised when a server URL is not a valid http(s) URL."""

    def __init__(self, url: str):
        super().__init__("Provided URL is not valid", {"url": url})
        self.url = url


class ServerUnreachableError(ServerError):
    """Raised when a server URL does not answer its health endpoint."""

    def __init__(self, url: str):
        super().__init__("Provided URL is not reachable", {"url": url})
        self.url = url


class ServerNotActiveError(ServerError):
    """Raised when a request is made while the session is not active."""

    def __init__(self, state: str):
        super().__init__("Server is not active. Cannot fetch data.", {"state": state})
        self.state = state


class ServerUrlNotSetError(ServerError):
    """Raised when a request is made with no server URL configured."""

    def __init__(self) -> None:
        super().__init__("Server URL is not set.")


class PayloadTooLargeError(ServerError):
    """Raised when the server rejects a request body as too large.

    Not retryable: the same payload will always be rejected.
    """

    def __init__(self, key: str | None = None):
        super().__init__("Error. Payload too large. Aborting.", {"key": key} if key else None)
        self.key = key


class FetchError(ServerError):
    """Raised when a request to the server fails for any other reason."""

    pass


class RequestCancelledError(ServerError):
    """Raised when a request was cancelled on purpose.

    Happens when a newer request with the same key supersedes it or the
    session is disabled. Callers should ignore it rather than report it.
    """

    def __init__(self, key: str, reason: str | None = None):
        super().__init__(f"Request '{key}' was cancelled", {"key": key, "reason": reason})
        self.key = key
        self.reason = reason

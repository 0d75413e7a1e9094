"""modhub core - shared primitives for trust scoring and the server session."""

from .cancellation import CancellationToken, OperationCancelled
from .events import EventEmitter
from .exceptions import (
    ConfigException,
    FetchError,
    InvalidServerUrlError,
    ModhubException,
    PayloadTooLargeError,
    RequestCancelledError,
    ServerError,
    ServerNotActiveError,
    ServerUnreachableError,
    ServerUrlNotSetError,
    TrustComputationError,
    ValidationException,
)
from .logging import JSONFormatter, StandardFormatter, configure_logging
from .storage import JsonFileStore, KeyValueStore, MemoryStore

__all__ = [
    # Cancellation
    "CancellationToken",
    "OperationCancelled",
    # Events
    "EventEmitter",
    # Exceptions
    "ModhubException",
    "ValidationException",
    "ConfigException",
    "TrustComputationError",
    "ServerError",
    "InvalidServerUrlError",
    "ServerUnreachableError",
    "ServerNotActiveError",
    "ServerUrlNotSetError",
    "PayloadTooLargeError",
    "FetchError",
    "RequestCancelledError",
    # Logging
    "JSONFormatter",
    "StandardFormatter",
    "configure_logging",
    # Storage
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
]

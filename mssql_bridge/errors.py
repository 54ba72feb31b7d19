"""Error taxonomy for the bridge, each mapped to an HTTP status."""
from typing import Optional


class BridgeError(Exception):
    """Base class for errors that are rendered as ``{"error": ...}`` bodies."""

    http_status = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class BadRequest(BridgeError):
    """Malformed request body; the pool is never touched."""

    http_status = 400


class PayloadTooLarge(BridgeError):
    http_status = 413


class PoolConnectionError(BridgeError, ConnectionError):
    """The connection pool could not establish a database session."""

    http_status = 500


class QueryExecutionError(BridgeError):
    """
    Driver-reported failure while executing a query.

    The message is the driver's own message so clients see e.g.
    ``Invalid object name 'missing_table'`` verbatim.
    """

    http_status = 500

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original

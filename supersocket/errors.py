# =============================================================================
# SuperSocket -- Error Types
# =============================================================================


class SuperSocketError(Exception):
    """Base exception for all SuperSocket errors."""


class InvalidUrlError(SuperSocketError):
    """The base URL could not be parsed as a WebSocket URL."""


class InsecureSchemeError(SuperSocketError):
    """A ``ws://`` URL was given while ``secure_only`` is set."""


class AuthRejectedError(SuperSocketError):
    """The authentication endpoint did not answer with the expected status."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class ConnectionTimeoutError(SuperSocketError):
    """No open event within ``connection_timeout``."""


class TransportError(SuperSocketError):
    """Error reported by the underlying transport."""


class ForwardingError(SuperSocketError):
    """An event could not be forwarded to its HTTP collector.

    ``event`` is ``"message"`` or ``"error"``, the kind of event that failed.
    """

    def __init__(self, message: str, event: str = "message") -> None:
        self.event = event
        super().__init__(message)


class DecryptionError(SuperSocketError):
    """An incoming frame could not be decrypted."""

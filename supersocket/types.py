# =============================================================================
# SuperSocket -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from .constants import (
    AUTH_OK_STATUS,
    AUTH_TIMEOUT,
    CONNECTION_TIMEOUT,
    FORWARD_TIMEOUT,
    MAX_MESSAGE_SIZE,
    MAX_RETRIES,
    RECONNECT_DELAY,
)

if TYPE_CHECKING:
    from .cipher import Cipher
    from .errors import SuperSocketError


class ReadyState(IntEnum):
    """Transport ready-state, numbered like the browser WebSocket API."""

    CONNECTING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


class ConnectionState(str, Enum):
    """Observable lifecycle state of a :class:`SuperSocket`.

    Typical flow: UNINITIALIZED -> CONNECTING -> OPEN -> CLOSING -> CLOSED.
    CLOSED is re-entered into CONNECTING on reconnect.
    """

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ErrorKind(str, Enum):
    """Classification carried by every :class:`ErrorEvent`."""

    INVALID_URL = "invalid_url"
    INSECURE_SCHEME = "insecure_scheme"
    AUTH_REJECTED = "auth_rejected"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    FORWARDING = "forwarding"
    DECRYPTION = "decryption"


# -- Events -------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OpenEvent:
    """The transport finished its opening handshake."""


@dataclass(frozen=True, slots=True)
class MessageEvent:
    """A frame received from the peer.

    Attributes:
        data: Payload after the optional decrypt step.
        raw: Payload exactly as it came off the wire.
    """

    data: str | bytes
    raw: str | bytes


@dataclass(frozen=True, slots=True)
class CloseEvent:
    code: int
    reason: str = ""
    was_clean: bool = True


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """A failure reported through the ``error`` channel.

    Attributes:
        kind: What failed (see :class:`ErrorKind`).
        message: Human-readable reason, also used as the close reason.
        error: The exception value, when one exists.
    """

    kind: ErrorKind
    message: str
    error: SuperSocketError | None = None


# -- Configuration ------------------------------------------------------------


def _freeze(obj: Any, name: str) -> None:
    """Replace a mapping field of a frozen dataclass with a read-only copy."""
    object.__setattr__(obj, name, MappingProxyType(dict(getattr(obj, name))))


@dataclass(frozen=True)
class AuthSpec:
    """Pre-connect authentication call.

    Attributes:
        endpoint: URL receiving the POST.
        headers: Extra request headers (JWT, CSRF token...).
        data: JSON body of the POST.
        ok_status: The only status that lets the connection proceed.
        timeout: Seconds before the call counts as failed.
    """

    endpoint: str
    headers: Mapping[str, str] = field(default_factory=dict)
    data: Any = field(default_factory=dict)
    ok_status: int = AUTH_OK_STATUS
    timeout: float = AUTH_TIMEOUT

    def __post_init__(self) -> None:
        _freeze(self, "headers")


@dataclass(frozen=True)
class ForwardSpec:
    """HTTP collectors receiving copies of incoming messages and errors."""

    on_message: str | None = None
    on_error: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout: float = FORWARD_TIMEOUT

    def __post_init__(self) -> None:
        _freeze(self, "headers")


@dataclass(frozen=True)
class ConnectionConfig:
    """Options of a :class:`SuperSocket`. Never mutated once built.

    Attributes:
        reconnect_delay: Seconds between two reconnect attempts.
        connection_timeout: Seconds allowed for the opening handshake.
        max_retries: Reconnect attempts allowed after a failure.
        chunk_size_kb: Split outgoing frames larger than this (KB).
            ``None`` disables chunking.
        secure_only: Reject ``ws://`` URLs.
        disable_reconnect: Never reconnect automatically.
        query_params: Appended to the URL query string.
        authenticate: Optional pre-connect auth call.
        forward: Optional HTTP forwarding of messages and errors.
        offline_queue: Buffer sends while not open.
        ping_interval: Keep-alive ping period in seconds (``None`` = off).
        cipher: Optional payload encryption.
        extra_headers: Additional HTTP headers for the handshake.
        max_message_size: Largest incoming frame accepted, in bytes.
    """

    reconnect_delay: float = RECONNECT_DELAY
    connection_timeout: float = CONNECTION_TIMEOUT
    max_retries: int = MAX_RETRIES
    chunk_size_kb: float | None = None
    secure_only: bool = True
    disable_reconnect: bool = False
    query_params: Mapping[str, str] = field(default_factory=dict)
    authenticate: AuthSpec | None = None
    forward: ForwardSpec | None = None
    offline_queue: bool = True
    ping_interval: float | None = None
    cipher: Cipher | None = None
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    max_message_size: int = MAX_MESSAGE_SIZE

    def __post_init__(self) -> None:
        if self.reconnect_delay <= 0:
            raise ValueError("reconnect_delay must be positive")
        if self.connection_timeout <= 0:
            raise ValueError("connection_timeout must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.chunk_size_kb is not None and self.chunk_size_kb <= 0:
            raise ValueError("chunk_size_kb must be positive")
        if self.ping_interval is not None and self.ping_interval <= 0:
            raise ValueError("ping_interval must be positive")
        _freeze(self, "query_params")
        _freeze(self, "extra_headers")

    def merged(self, **overrides: Any) -> ConnectionConfig:
        """Return a copy with *overrides* layered over the current values."""
        return replace(self, **overrides)


@dataclass(frozen=True, slots=True)
class ChunkEnvelope:
    """One slice of an oversized outgoing payload.

    Receivers rebuild the payload by concatenating ``chunk`` values of the
    same ``chunk_id`` in ``index`` order once ``total_chunks`` arrived.
    """

    chunk: str
    index: int
    chunk_id: str
    total_chunks: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "chunk": self.chunk,
            "index": self.index,
            "chunkId": self.chunk_id,
            "nbChunks": self.total_chunks,
        }

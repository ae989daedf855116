"""SuperSocket: a resilient single-connection WebSocket client.

Usage::

    from supersocket import connect

    async with connect("wss://example.com/ws", max_retries=3) as sock:
        sock.onmessage = lambda event: print(event.data)
        sock.send({"hello": "world"})

Adds to a plain WebSocket client: bounded automatic reconnection, an offline
send queue, chunking of large frames, an optional auth call before
connecting, optional AES-GCM payload encryption and HTTP forwarding of
messages and errors.
"""

from typing import Any, Sequence

from ._version import __version__
from .cipher import AESCipher, Cipher
from .connection import SuperSocket
from .errors import (
    AuthRejectedError,
    ConnectionTimeoutError,
    DecryptionError,
    ForwardingError,
    InsecureSchemeError,
    InvalidUrlError,
    SuperSocketError,
    TransportError,
)
from .transport import Transport, TransportHandle, WebSocketTransport
from .types import (
    AuthSpec,
    ChunkEnvelope,
    CloseEvent,
    ConnectionConfig,
    ConnectionState,
    ErrorEvent,
    ErrorKind,
    ForwardSpec,
    MessageEvent,
    OpenEvent,
    ReadyState,
)


def connect(
    url: str,
    protocols: str | Sequence[str] | None = None,
    config: ConnectionConfig | None = None,
    **options: Any,
) -> SuperSocket:
    """Create a :class:`SuperSocket` from keyword options.

    Use as an async context manager. Keyword arguments are the fields of
    :class:`ConnectionConfig` -- common ones: ``max_retries``,
    ``reconnect_delay``, ``chunk_size_kb``, ``secure_only``, ``cipher``.

    Args:
        url: ``wss://`` base URL.
        protocols: Subprotocol name or list of names.
        config: Base options, defaults to :class:`ConnectionConfig()`.
        **options: Layered over *config* with :meth:`ConnectionConfig.merged`.

    Returns:
        A :class:`SuperSocket` instance, not yet started.

    Example::

        async with connect("wss://example.com/ws", chunk_size_kb=64) as sock:
            sock.send({"big": "payload"})
    """
    base = config or ConnectionConfig()
    return SuperSocket(url, protocols, base.merged(**options))


__all__ = [
    "__version__",
    "connect",
    "SuperSocket",
    "ConnectionConfig",
    "AuthSpec",
    "ForwardSpec",
    "ConnectionState",
    "ReadyState",
    "ErrorKind",
    "OpenEvent",
    "MessageEvent",
    "CloseEvent",
    "ErrorEvent",
    "ChunkEnvelope",
    "Cipher",
    "AESCipher",
    "Transport",
    "TransportHandle",
    "WebSocketTransport",
    "SuperSocketError",
    "InvalidUrlError",
    "InsecureSchemeError",
    "AuthRejectedError",
    "ConnectionTimeoutError",
    "TransportError",
    "ForwardingError",
    "DecryptionError",
]

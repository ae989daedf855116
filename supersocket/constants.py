# =============================================================================
# SuperSocket -- Constants
# =============================================================================
#
# Defaults for ConnectionConfig and the wire values shared with peers.
# =============================================================================

# -- Timing (seconds) --------------------------------------------------------

RECONNECT_DELAY = 1.0
CONNECTION_TIMEOUT = 10.0

# -- Reconnection -------------------------------------------------------------

MAX_RETRIES = 10

# -- HTTP side calls (seconds) ------------------------------------------------

AUTH_TIMEOUT = 10.0
AUTH_OK_STATUS = 200
FORWARD_TIMEOUT = 5.0

# -- Messages ------------------------------------------------------------------

MAX_MESSAGE_SIZE = 1_048_576  # 1 MB
BYTES_PER_KB = 1024

# -- Chunking ------------------------------------------------------------------

CHUNK_ID_PREFIX = "chunk-"

# -- URL schemes ---------------------------------------------------------------

SECURE_SCHEME = "wss"
ALLOWED_SCHEMES = ("ws", "wss")

# -- WebSocket close codes -----------------------------------------------------

WS_CLOSE_NORMAL = 1000
WS_CLOSE_ABNORMAL = 1006

# =============================================================================
# SuperSocket -- Message Framer
# =============================================================================
#
# Outgoing:  payload -> ASCII JSON -> cipher.encrypt -> 1 frame, or N chunk
#            envelopes when the text is larger than chunk_size_kb.
# Incoming:  raw frame -> cipher.decrypt.
#
# Chunk envelope (one JSON object per frame):
#   {"chunk": "<slice>", "index": 0, "chunkId": "chunk-<hex>", "nbChunks": N}
# =============================================================================

from __future__ import annotations

import json
from uuid import uuid4
from typing import TYPE_CHECKING, Any

from .constants import BYTES_PER_KB, CHUNK_ID_PREFIX
from .errors import DecryptionError
from .types import ChunkEnvelope

if TYPE_CHECKING:
    from .cipher import Cipher


class MessageFramer:
    """Turns payloads into wire frames and incoming frames into payloads.

    Args:
        chunk_size_kb: Largest single frame in KB. ``None`` disables chunking.
        cipher: Optional transform applied to outgoing and incoming text.
    """

    def __init__(
        self,
        chunk_size_kb: float | None = None,
        cipher: Cipher | None = None,
    ) -> None:
        self._chunk_size_kb = chunk_size_kb
        self._cipher = cipher

    @staticmethod
    def serialize(payload: Any) -> str:
        """Compact, ASCII-only JSON for every payload, strings included."""
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True)

    def frames(self, text: str) -> list[str]:
        """Encrypt *text* and split it into the frames to transmit."""
        if self._cipher is not None:
            text = self._cipher.encrypt(text)

        size_kb = len(text.encode("utf-8")) / BYTES_PER_KB
        if self._chunk_size_kb is None or size_kb <= self._chunk_size_kb:
            return [text]

        return [
            json.dumps(envelope.to_wire(), separators=(",", ":"))
            for envelope in self.split(text)
        ]

    def split(self, text: str) -> list[ChunkEnvelope]:
        """Slice *text* into envelopes sharing one fresh chunk id.

        Each slice holds at most ``chunk_size_kb`` KB of UTF-8 and never
        splits a character.
        """
        assert self._chunk_size_kb is not None
        step = max(1, int(self._chunk_size_kb * BYTES_PER_KB))
        if text.isascii():
            slices = [text[i : i + step] for i in range(0, len(text), step)]
        else:
            slices = _utf8_slices(text, step)
        chunk_id = f"{CHUNK_ID_PREFIX}{uuid4().hex}"
        return [
            ChunkEnvelope(
                chunk=chunk,
                index=index,
                chunk_id=chunk_id,
                total_chunks=len(slices),
            )
            for index, chunk in enumerate(slices)
        ]

    def decode(self, raw: str | bytes) -> str | bytes:
        """Apply the cipher to an incoming frame.

        Raises:
            DecryptionError: The frame cannot be decrypted.
        """
        if self._cipher is None:
            return raw

        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DecryptionError(f"Binary frame is not UTF-8: {exc}") from exc

        try:
            return self._cipher.decrypt(raw)
        except DecryptionError:
            raise
        except Exception as exc:
            raise DecryptionError(f"Decryption failed: {exc}") from exc


def _utf8_slices(text: str, max_bytes: int) -> list[str]:
    slices: list[str] = []
    current: list[str] = []
    size = 0
    for char in text:
        width = len(char.encode("utf-8"))
        if current and size + width > max_bytes:
            slices.append("".join(current))
            current, size = [], 0
        current.append(char)
        size += width
    if current:
        slices.append("".join(current))
    return slices

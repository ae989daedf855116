# =============================================================================
# SuperSocket -- Payload Cipher
# =============================================================================
#
# AES-GCM-256 keyed from a shared passphrase via HKDF-SHA256.
# Wire: base64(nonce (12) + ciphertext + tag (16)).
# =============================================================================

from __future__ import annotations

import base64
import binascii
import os
from typing import Protocol, runtime_checkable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import DecryptionError

# Wire constants
HKDF_SALT = b"supersocket-payload"
HKDF_INFO = b"aes-gcm-key"
AES_KEY_LEN = 32  # 256 bits
GCM_IV_LEN = 12  # 96 bits
GCM_TAG_LEN = 16  # 128 bits


@runtime_checkable
class Cipher(Protocol):
    """Text-to-text payload transform applied around the wire."""

    def encrypt(self, plaintext: str) -> str: ...

    def decrypt(self, ciphertext: str) -> str: ...


class AESCipher:
    """AES-GCM-256 cipher shared by both ends through a passphrase.

    Both peers must be built from the same *key*. Each frame uses a fresh
    random nonce, so encrypting the same text twice gives different output.
    """

    def __init__(self, key: str | bytes) -> None:
        if not key:
            raise ValueError("Cipher key must not be empty")
        secret = key.encode("utf-8") if isinstance(key, str) else key
        self._aes = AESGCM(
            HKDF(
                algorithm=SHA256(),
                length=AES_KEY_LEN,
                salt=HKDF_SALT,
                info=HKDF_INFO,
            ).derive(secret)
        )

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(GCM_IV_LEN)
        sealed = self._aes.encrypt(iv, plaintext.encode("utf-8"), None)
        return base64.b64encode(iv + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            data = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError(f"Payload is not valid base64: {exc}") from exc

        if len(data) < GCM_IV_LEN + GCM_TAG_LEN:
            raise DecryptionError("Encrypted payload too short")

        try:
            plaintext = self._aes.decrypt(data[:GCM_IV_LEN], data[GCM_IV_LEN:], None)
        except InvalidTag as exc:
            raise DecryptionError("Decryption failed: authentication tag mismatch") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError(f"Decrypted payload is not UTF-8: {exc}") from exc

"""
Payload encryption for uploaded files.

Uses AES-256-GCM with a random one-time key. The blob store object is
self-describing:

    nonce (12 bytes) || tag (16 bytes) || ciphertext
"""

import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import AuthenticationError, MalformedPayloadError


def wipe(buffer: bytearray) -> None:
    """Overwrite key material in place."""
    for i in range(len(buffer)):
        buffer[i] = 0


class PayloadCodec:
    """Encrypts and decrypts file payloads."""

    KEY_LEN = 32  # 256 bits
    NONCE_LEN = 12  # 96 bits for AES-GCM
    TAG_LEN = 16
    HEADER_LEN = NONCE_LEN + TAG_LEN

    @classmethod
    def encrypt(
        cls,
        plaintext: bytes,
        associated_data: Optional[bytes] = None
    ) -> tuple[bytes, bytearray]:
        """
        Encrypt a payload under a fresh key and nonce.

        Args:
            plaintext: File contents
            associated_data: Optional data authenticated but not encrypted

        Returns:
            Tuple of (framed payload, symmetric key). The key is a bytearray
            so the caller can wipe it when done.
        """
        key = bytearray(os.urandom(cls.KEY_LEN))
        nonce = os.urandom(cls.NONCE_LEN)

        sealed = AESGCM(key).encrypt(nonce, plaintext, associated_data)
        ciphertext, tag = sealed[:-cls.TAG_LEN], sealed[-cls.TAG_LEN:]

        return nonce + tag + ciphertext, key

    @classmethod
    def decrypt(
        cls,
        payload: bytes,
        key: bytes,
        associated_data: Optional[bytes] = None
    ) -> bytes:
        """
        Verify and decrypt a framed payload.

        Args:
            payload: nonce || tag || ciphertext
            key: The 32-byte symmetric key
            associated_data: Must match what was given to encrypt

        Returns:
            The original plaintext

        Raises:
            MalformedPayloadError: Payload shorter than 28 bytes or bad key length
            AuthenticationError: Tag does not verify
        """
        if len(payload) < cls.HEADER_LEN:
            raise MalformedPayloadError(
                f"Payload is {len(payload)} bytes, minimum is {cls.HEADER_LEN}"
            )
        if len(key) != cls.KEY_LEN:
            raise MalformedPayloadError(f"Symmetric key must be {cls.KEY_LEN} bytes")

        nonce = payload[:cls.NONCE_LEN]
        tag = payload[cls.NONCE_LEN:cls.HEADER_LEN]
        ciphertext = payload[cls.HEADER_LEN:]

        try:
            return AESGCM(key).decrypt(nonce, ciphertext + tag, associated_data)
        except InvalidTag:
            raise AuthenticationError("Payload authentication failed") from None

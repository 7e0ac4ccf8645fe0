"""
Envelope wrapping of one-time payload keys.

The key is wrapped for a single recipient using an ephemeral X25519
exchange, HKDF-SHA256 and AES-256-GCM. The wrapped form is self-contained:

    ephemeral public key (32) || nonce (12) || ciphertext (32) || tag (16)
"""

import os
import base64
import binascii

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives import hashes

from .errors import KeyUnwrapError, KeyWrapError
from .keypair import public_key_bytes


class EnvelopeKeyWrapper:
    """Wraps and unwraps payload keys for a recipient."""

    KEY_LEN = 32
    PUBLIC_KEY_LEN = 32
    NONCE_LEN = 12
    TAG_LEN = 16
    WRAPPED_LEN = PUBLIC_KEY_LEN + NONCE_LEN + KEY_LEN + TAG_LEN
    HKDF_INFO = b"medsecure-envelope-key-wrap"

    @classmethod
    def _derive_wrapping_key(cls, shared_secret: bytes, ephemeral_public: bytes, recipient_public: bytes) -> bytes:
        return HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=ephemeral_public + recipient_public,
            info=cls.HKDF_INFO,
        ).derive(shared_secret)

    @classmethod
    def wrap(cls, key: bytes, recipient_public_key: X25519PublicKey) -> bytes:
        """
        Wrap a symmetric key so only the recipient can recover it.

        Args:
            key: The 32-byte payload key
            recipient_public_key: The recipient's X25519 public key

        Returns:
            The wrapped key bytes

        Raises:
            KeyWrapError: Bad key length or unusable public key
        """
        if len(key) != cls.KEY_LEN:
            raise KeyWrapError(f"Symmetric key must be {cls.KEY_LEN} bytes")
        if not isinstance(recipient_public_key, X25519PublicKey):
            raise KeyWrapError("Recipient public key must be an X25519 public key")

        ephemeral_private = X25519PrivateKey.generate()
        ephemeral_public = public_key_bytes(ephemeral_private.public_key())
        recipient_public = public_key_bytes(recipient_public_key)

        try:
            shared_secret = ephemeral_private.exchange(recipient_public_key)
        except ValueError:
            raise KeyWrapError("Key agreement with recipient public key failed") from None

        wrapping_key = cls._derive_wrapping_key(shared_secret, ephemeral_public, recipient_public)
        nonce = os.urandom(cls.NONCE_LEN)
        sealed = AESGCM(wrapping_key).encrypt(nonce, bytes(key), ephemeral_public)

        return ephemeral_public + nonce + sealed

    @classmethod
    def unwrap(cls, wrapped: bytes, recipient_private_key: X25519PrivateKey) -> bytearray:
        """
        Recover a wrapped symmetric key.

        Wrong key, corrupted bytes and bad length all fail the same way.

        Args:
            wrapped: Bytes produced by wrap()
            recipient_private_key: The recipient's X25519 private key

        Returns:
            The 32-byte key as a bytearray

        Raises:
            KeyUnwrapError: On any failure
        """
        if len(wrapped) != cls.WRAPPED_LEN or not isinstance(recipient_private_key, X25519PrivateKey):
            raise KeyUnwrapError("Unable to unwrap key")

        ephemeral_public = bytes(wrapped[:cls.PUBLIC_KEY_LEN])
        nonce = bytes(wrapped[cls.PUBLIC_KEY_LEN:cls.PUBLIC_KEY_LEN + cls.NONCE_LEN])
        sealed = bytes(wrapped[cls.PUBLIC_KEY_LEN + cls.NONCE_LEN:])
        recipient_public = public_key_bytes(recipient_private_key.public_key())

        try:
            shared_secret = recipient_private_key.exchange(
                X25519PublicKey.from_public_bytes(ephemeral_public)
            )
            wrapping_key = cls._derive_wrapping_key(shared_secret, ephemeral_public, recipient_public)
            key = AESGCM(wrapping_key).decrypt(nonce, sealed, ephemeral_public)
        except (ValueError, InvalidTag):
            raise KeyUnwrapError("Unable to unwrap key") from None

        return bytearray(key)


def encode_wrapped_key(wrapped: bytes) -> str:
    """Text-safe form of a wrapped key for the registry."""
    return base64.b64encode(wrapped).decode("ascii")


def decode_wrapped_key(value: str) -> bytes:
    """
    Decode a wrapped key read from the registry.

    Raises:
        KeyUnwrapError: If the text is not valid base64
    """
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise KeyUnwrapError("Unable to unwrap key") from None

"""
Cryptographic envelope for MedSecure Companion.

Handles:
- Identity keypairs (X25519)
- Payload encryption (AES-256-GCM)
- Key wrapping for a recipient (X25519 + HKDF + AES-256-GCM)
- Passphrase-protected key storage (Argon2id)
"""

from .keypair import KeyPair
from .key_manager import KeyManager
from .payload import PayloadCodec
from .wrapper import EnvelopeKeyWrapper, encode_wrapped_key, decode_wrapped_key

__all__ = [
    "KeyPair",
    "KeyManager",
    "PayloadCodec",
    "EnvelopeKeyWrapper",
    "encode_wrapped_key",
    "decode_wrapped_key",
]

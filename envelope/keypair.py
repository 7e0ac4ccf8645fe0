"""
X25519 identities used for envelope wrapping.

A KeyPair is generated once per identity and distributed out-of-band
as a hex export: {"privateKeyHex": ..., "publicKeyHex": ...}.
"""

from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives import serialization

from .errors import ConfigurationError


KEY_LEN = 32


def _strip_hex(value: str) -> str:
    value = value.strip()
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return value


def private_key_bytes(private_key: X25519PrivateKey) -> bytes:
    """Raw 32-byte scalar of a private key."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption()
    )


def public_key_bytes(public_key: X25519PublicKey) -> bytes:
    """Raw 32-byte encoding of a public key."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    )


def load_public_key_hex(value: str) -> X25519PublicKey:
    """
    Parse a recipient public key from hex (an optional 0x prefix is accepted).

    Raises:
        ConfigurationError: If the value is not a 32-byte hex key
    """
    try:
        raw = bytes.fromhex(_strip_hex(value))
    except (ValueError, AttributeError):
        raise ConfigurationError("Public key must be hex encoded")
    if len(raw) != KEY_LEN:
        raise ConfigurationError(f"Public key must be {KEY_LEN} bytes, got {len(raw)}")
    return X25519PublicKey.from_public_bytes(raw)


def load_private_key_hex(value: str) -> X25519PrivateKey:
    """
    Parse a private key from hex (an optional 0x prefix is accepted).

    Raises:
        ConfigurationError: If the value is not a 32-byte hex key
    """
    try:
        raw = bytes.fromhex(_strip_hex(value))
    except (ValueError, AttributeError):
        raise ConfigurationError("Private key must be hex encoded")
    if len(raw) != KEY_LEN:
        raise ConfigurationError(f"Private key must be {KEY_LEN} bytes, got {len(raw)}")
    return X25519PrivateKey.from_private_bytes(raw)


@dataclass(frozen=True)
class KeyPair:
    """An X25519 identity (uploader or recipient)."""
    private_key: X25519PrivateKey
    public_key: X25519PublicKey

    @classmethod
    def generate(cls) -> "KeyPair":
        """Generate a fresh identity."""
        private_key = X25519PrivateKey.generate()
        return cls(private_key=private_key, public_key=private_key.public_key())

    @classmethod
    def from_private_hex(cls, value: str) -> "KeyPair":
        """Rebuild an identity from its exported private key."""
        private_key = load_private_key_hex(value)
        return cls(private_key=private_key, public_key=private_key.public_key())

    @property
    def private_key_hex(self) -> str:
        return private_key_bytes(self.private_key).hex()

    @property
    def public_key_hex(self) -> str:
        return public_key_bytes(self.public_key).hex()

    def export(self) -> dict[str, str]:
        """Provisioning export of this identity."""
        return {
            "privateKeyHex": self.private_key_hex,
            "publicKeyHex": self.public_key_hex,
        }

    @classmethod
    def from_export(cls, data: dict[str, str]) -> "KeyPair":
        """
        Reconstruct from a provisioning export.

        Raises:
            ConfigurationError: If the export is incomplete or inconsistent
        """
        if "privateKeyHex" not in data:
            raise ConfigurationError("Key export is missing privateKeyHex")
        keypair = cls.from_private_hex(data["privateKeyHex"])
        expected = data.get("publicKeyHex")
        if expected and _strip_hex(expected).lower() != keypair.public_key_hex:
            raise ConfigurationError("Key export publicKeyHex does not match privateKeyHex")
        return keypair

"""
On-disk storage for a recipient identity.

The public key is stored as hex. The private key is encrypted with
AES-256-GCM under a key derived from the user's passphrase (Argon2id).
"""

import os
import json
import base64
import logging
from pathlib import Path
from typing import Optional

from argon2.low_level import hash_secret_raw, Type
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import ConfigurationError
from .keypair import KeyPair, load_public_key_hex, private_key_bytes

logger = logging.getLogger(__name__)


def derive_passphrase_key(passphrase: str, salt: bytes | None = None) -> tuple[bytes, bytes]:
    """
    Derive a 256-bit key from a passphrase using Argon2id.

    Args:
        passphrase: The user's passphrase
        salt: Optional salt bytes. If None, generates a random salt.

    Returns:
        Tuple of (derived_key, salt)
    """
    if salt is None:
        salt = os.urandom(KeyManager.SALT_LEN)

    derived_key = hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=salt,
        time_cost=KeyManager.ARGON2_TIME_COST,
        memory_cost=KeyManager.ARGON2_MEMORY_COST,
        parallelism=KeyManager.ARGON2_PARALLELISM,
        hash_len=32,
        type=Type.ID,
    )
    return derived_key, salt


class KeyManager:
    """Stores one X25519 identity with a passphrase-encrypted private key."""

    NONCE_LEN = 12
    SALT_LEN = 16

    # OWASP recommended Argon2id parameters
    ARGON2_TIME_COST = 3
    ARGON2_MEMORY_COST = 65536  # 64 MB
    ARGON2_PARALLELISM = 4

    def __init__(self, storage_dir: Path):
        """
        Initialize the key manager.

        Args:
            storage_dir: Directory for storing key files
        """
        self.storage_dir = storage_dir
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        self.public_key_path = storage_dir / "public_key.hex"
        self.private_key_path = storage_dir / "private_key.enc"

        # Cleared on lock()
        self._unlocked_private_key: Optional[X25519PrivateKey] = None

    @property
    def has_keys(self) -> bool:
        return self.public_key_path.exists() and self.private_key_path.exists()

    @property
    def is_unlocked(self) -> bool:
        return self._unlocked_private_key is not None

    def generate_keypair(self, passphrase: str) -> KeyPair:
        """
        Generate a new identity and store it encrypted.

        The new private key stays unlocked in memory.

        Args:
            passphrase: Passphrase protecting the private key

        Returns:
            The generated KeyPair
        """
        keypair = KeyPair.generate()
        self._store(keypair, passphrase)
        self._unlocked_private_key = keypair.private_key
        logger.info("Generated identity %s", keypair.public_key_hex)
        return keypair

    def import_keypair(self, keypair: KeyPair, passphrase: str) -> None:
        """Store an identity that was provisioned elsewhere."""
        self._store(keypair, passphrase)
        self._unlocked_private_key = keypair.private_key

    def _store(self, keypair: KeyPair, passphrase: str) -> None:
        derived_key, salt = derive_passphrase_key(passphrase)
        nonce = os.urandom(self.NONCE_LEN)
        ciphertext = AESGCM(derived_key).encrypt(nonce, private_key_bytes(keypair.private_key), None)

        encrypted_data = {
            "salt": base64.b64encode(salt).decode("ascii"),
            "nonce": base64.b64encode(nonce).decode("ascii"),
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
            "algorithm": "X25519",
            "kdf": "argon2id",
        }

        self.public_key_path.write_text(keypair.public_key_hex)
        self.private_key_path.write_text(json.dumps(encrypted_data, indent=2))

    def unlock(self, passphrase: str) -> bool:
        """
        Unlock the private key using the passphrase.

        Returns:
            True if successful, False if the passphrase is wrong

        Raises:
            ConfigurationError: If no keys have been generated or the key file is corrupted
        """
        if not self.has_keys:
            raise ConfigurationError("No keys found. Generate keys first.")

        try:
            encrypted_data = json.loads(self.private_key_path.read_text())
            salt = base64.b64decode(encrypted_data["salt"], validate=True)
            nonce = base64.b64decode(encrypted_data["nonce"], validate=True)
            ciphertext = base64.b64decode(encrypted_data["ciphertext"], validate=True)
            if len(salt) != self.SALT_LEN or len(nonce) != self.NONCE_LEN:
                raise ValueError("bad salt or nonce length")
        except (ValueError, KeyError, TypeError) as e:
            raise ConfigurationError(f"Key file {self.private_key_path} is corrupted") from e

        derived_key, _ = derive_passphrase_key(passphrase, salt)
        try:
            private_key_raw = AESGCM(derived_key).decrypt(nonce, ciphertext, None)
        except InvalidTag:
            logger.warning("Unlock failed: invalid passphrase")
            return False

        self._unlocked_private_key = X25519PrivateKey.from_private_bytes(private_key_raw)
        return True

    def lock(self) -> None:
        """Clear the private key from memory."""
        self._unlocked_private_key = None

    def get_public_key(self) -> Optional[X25519PublicKey]:
        if not self.public_key_path.exists():
            return None
        return load_public_key_hex(self.public_key_path.read_text())

    def get_public_key_hex(self) -> Optional[str]:
        if not self.public_key_path.exists():
            return None
        return self.public_key_path.read_text().strip()

    def get_unlocked_private_key(self) -> Optional[X25519PrivateKey]:
        """Get the unlocked private key (only if unlocked)."""
        return self._unlocked_private_key

    def export_keys(self, path: Path) -> None:
        """
        Write the {privateKeyHex, publicKeyHex} export for out-of-band distribution.

        Raises:
            ConfigurationError: If the private key is locked
        """
        if not self.is_unlocked:
            raise ConfigurationError("Private key must be unlocked first.")
        keypair = KeyPair(self._unlocked_private_key, self._unlocked_private_key.public_key())
        path.write_text(json.dumps(keypair.export(), indent=2))

"""
Configuration for MedSecure Companion.

Settings are gathered into an explicit Config that the CLI and local
service pass to the orchestrators. The core never reads the environment.
"""

import os
from pathlib import Path
from typing import Mapping, Optional
from dataclasses import dataclass, field, fields

from envelope.errors import ConfigurationError

# Application version - update this for each release
VERSION = "1.0.0"

ENV_PREFIX = "MEDSECURE_"


@dataclass
class Config:
    """Application configuration."""

    # Local service settings
    HOST: str = "127.0.0.1"
    PORT: int = 18422

    # Storage paths
    STORAGE_DIR: Path = field(default_factory=lambda: Path.home() / ".medsecure")

    # Blob store (Pinata pinning + IPFS gateway)
    PINATA_API_URL: str = "https://api.pinata.cloud"
    PINATA_API_KEY: str = ""
    PINATA_API_SECRET: str = ""
    IPFS_GATEWAY: str = "https://ipfs.io/ipfs/"

    # Registry
    REGISTRY_URL: str = ""
    REGISTRY_TOKEN: str = ""
    UPLOADER_ID: str = "local-uploader"

    # Per-call network timeout in seconds
    REQUEST_TIMEOUT: float = 30.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Build a Config from MEDSECURE_* variables.

        Args:
            environ: Variables to read; defaults to os.environ

        Raises:
            ConfigurationError: If a numeric setting cannot be parsed
        """
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name)
            if raw is None or raw == "":
                continue
            try:
                if f.name == "PORT":
                    values[f.name] = int(raw)
                elif f.name == "REQUEST_TIMEOUT":
                    values[f.name] = float(raw)
                elif f.name == "STORAGE_DIR":
                    values[f.name] = Path(raw).expanduser()
                else:
                    values[f.name] = raw
            except ValueError:
                raise ConfigurationError(f"Invalid value for {ENV_PREFIX}{f.name}: {raw!r}")
        return cls(**values)

    def require(self, *names: str) -> None:
        """
        Fail before any work starts when required settings are empty.

        Raises:
            ConfigurationError: Listing every missing setting
        """
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                "Missing settings: " + ", ".join(ENV_PREFIX + name for name in missing)
            )

    @property
    def has_remote_store(self) -> bool:
        return bool(self.PINATA_API_KEY and self.PINATA_API_SECRET)

    @property
    def has_remote_registry(self) -> bool:
        return bool(self.REGISTRY_URL and self.REGISTRY_TOKEN)

    @property
    def keys_dir(self) -> Path:
        """Directory for cryptographic keys."""
        path = self.STORAGE_DIR / "keys"
        path.mkdir(parents=True, exist_ok=True)
        return path

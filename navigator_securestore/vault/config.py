"""
Storage Configuration: validated settings for a SecureStore instance.

Reads optional overrides from environment variables:
    SECURESTORE_ROOT = <directory holding every domain>
    SECURESTORE_ENCRYPTED = <true|false>
    SECURESTORE_ATTEMPTS = <integer>
    SECURESTORE_RETRY_DELAY = <seconds>
    SECURESTORE_MACHINE_NAME / SECURESTORE_USER_NAME = <identifiers>
    SECURESTORE_WORKERS = <integer>

Security Note:
    Machine and user names salt the master secret and derive the fallback
    keypair. Changing them orphans every record written before.
"""
import os
import getpass
import logging
import platform
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("navigator.securestore")

_ENV_FIELDS = {
    "root": "SECURESTORE_ROOT",
    "encrypted": "SECURESTORE_ENCRYPTED",
    "attempts": "SECURESTORE_ATTEMPTS",
    "retry_delay": "SECURESTORE_RETRY_DELAY",
    "machine_name": "SECURESTORE_MACHINE_NAME",
    "user_name": "SECURESTORE_USER_NAME",
    "background_workers": "SECURESTORE_WORKERS",
}


def default_root() -> Path:
    """Return the per-user directory that holds every domain."""
    return Path.home() / ".navigator" / "securestore"


def current_machine() -> str:
    return platform.node() or "localhost"


def current_user() -> str:
    """Return the login name, falling back to a fixed name in bare containers."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USERNAME", "unknown")


class StorageConfig(BaseModel):
    """Validated storage configuration."""

    root: Path = Field(default_factory=default_root)
    encrypted: bool = True
    attempts: int = Field(default=10, ge=1, le=100)
    retry_delay: float = Field(default=0.1, ge=0)
    machine_name: str = Field(default_factory=current_machine)
    user_name: str = Field(default_factory=current_user)
    background_workers: int = Field(default=1, ge=1, le=32)

    @field_validator("machine_name", "user_name")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Device/user identifiers may not be blank."""
        if not v or not v.strip():
            raise ValueError("Device and user identifiers cannot be empty")
        return v

    @field_validator("root")
    @classmethod
    def expand_root(cls, v: Path) -> Path:
        return v.expanduser()

    @classmethod
    def from_env(cls, **overrides) -> "StorageConfig":
        """Create StorageConfig from environment variables.

        Args:
            overrides: Field values that take precedence over the environment.

        Returns:
            Populated StorageConfig instance.
        """
        values = {}
        for field, env_name in _ENV_FIELDS.items():
            raw = os.environ.get(env_name)
            if raw is not None:
                values[field] = raw
        values.update(overrides)
        logger.debug(
            "Storage config from env: %s", sorted(k for k in values if k in _ENV_FIELDS)
        )
        return cls(**values)

"""
Configuration for the vault mode coordinator.

Uses Pydantic Settings for type-safe configuration with validation. Every
setting can be overridden via environment variables (uppercase names) or a
.env file in the working directory.

Example:
    >>> from libs.vault_mode.settings import get_settings
    >>> settings = get_settings()
    >>> settings.vault_addr
    'http://localhost:8200'
    >>> settings.mode_file
    PosixPath('.devcontainer/data/vault-mode.json')
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class VaultModeSettings(BaseSettings):
    """
    Vault mode coordinator settings.

    Attributes:
        vault_addr: Store listener address
        vault_token: Token passed through to the store (supplied by bootstrap)
        vault_mount: KV v2 mount point holding the secret tree
        vault_secret_prefixes: Top-level prefixes exported by backups
        vault_data_dir: Directory holding the mode record, keys and backups
        vault_unseal_keys_file: Override for the unseal key file location
        vault_backup_retention: Snapshots kept by prune
        vault_init_shares / vault_init_threshold: Shamir parameters for init
        vault_ready_timeout_seconds: Bound on waiting for a relaunched store
        vault_orchestrator: "compose" (docker compose) or "manual"
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extraneous env vars from the devcontainer
    )

    # ========================================================================
    # Store connection
    # ========================================================================

    vault_addr: str = Field(default="http://localhost:8200", description="Store address")
    vault_token: str = Field(default="root", repr=False, description="Store token")
    vault_mount: str = Field(default="secret", description="KV v2 mount point")
    vault_verify_tls: bool = Field(default=True, description="Verify TLS certificates")
    vault_request_timeout_seconds: int = Field(default=5, ge=1, le=120)
    vault_secret_prefixes: list[str] = Field(
        default_factory=lambda: ["dev", "test", "ci", "prod"],
        description="Secret prefixes exported by backups",
    )

    # ========================================================================
    # Filesystem layout
    # ========================================================================

    vault_data_dir: Path = Field(default=Path(".devcontainer/data"))
    vault_unseal_keys_file: Path | None = Field(default=None)

    # ========================================================================
    # Lifecycle policy
    # ========================================================================

    vault_backup_retention: int = Field(default=5, ge=1, le=100)
    vault_init_shares: int = Field(default=5, ge=1, le=10)
    vault_init_threshold: int = Field(default=3, ge=1, le=10)
    vault_ready_timeout_seconds: float = Field(default=60.0, gt=0, le=600)

    # ========================================================================
    # Process orchestration
    # ========================================================================

    vault_orchestrator: Literal["compose", "manual"] = "compose"
    vault_compose_file: Path = Field(default=Path(".devcontainer/docker-compose.dev.yml"))
    vault_compose_service: str = "vault-dev"
    vault_compose_env_file: Path = Field(default=Path(".devcontainer/.env"))

    log_level: str = Field(default="INFO")

    @model_validator(mode="after")
    def _threshold_within_shares(self) -> "VaultModeSettings":
        if self.vault_init_threshold > self.vault_init_shares:
            raise ValueError(
                f"VAULT_INIT_THRESHOLD ({self.vault_init_threshold}) exceeds "
                f"VAULT_INIT_SHARES ({self.vault_init_shares})"
            )
        return self

    @property
    def mode_file(self) -> Path:
        return self.vault_data_dir / "vault-mode.json"

    @property
    def unseal_keys_file(self) -> Path:
        return self.vault_unseal_keys_file or self.vault_data_dir / "vault-unseal-keys.json"

    @property
    def backups_dir(self) -> Path:
        return self.vault_data_dir / "vault-backups"

    @property
    def raft_dir(self) -> Path:
        return self.vault_data_dir / "vault-data" / "raft"


@lru_cache
def get_settings() -> VaultModeSettings:
    """Get cached settings instance."""
    return VaultModeSettings()

"""Configuration module for Rhizonote Sync."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the sync state database
_USER_ENV = Path.home() / ".rhizonote" / ".env"
load_dotenv(_USER_ENV)

logger = logging.getLogger(__name__)

_DAY_MS = 24 * 60 * 60 * 1000

STRUCTURAL_WINNERS = ("local", "remote")

def _optional_env(name: str) -> Optional[str]:
    """Return the environment value, treating empty strings as unset."""
    value = os.getenv(name)
    return value if value else None

class SyncConfig(BaseModel):
    """Configuration for the sync engine and its scheduler."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("RHIZONOTE_BASE_DIR", "."))
    )
    # Local sync-state database
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("RHIZONOTE_DATABASE_PATH", "data/db/rhizonote_sync.db")
        )
    )
    # Dropbox credentials. A refresh token needs the app key to be usable.
    dropbox_app_key: Optional[str] = Field(
        default_factory=lambda: _optional_env("RHIZONOTE_DROPBOX_APP_KEY")
    )
    dropbox_access_token: Optional[str] = Field(
        default_factory=lambda: _optional_env("RHIZONOTE_DROPBOX_ACCESS_TOKEN")
    )
    dropbox_refresh_token: Optional[str] = Field(
        default_factory=lambda: _optional_env("RHIZONOTE_DROPBOX_REFRESH_TOKEN")
    )
    # Remote folder that holds the vault ("" is the app folder root)
    remote_root: str = Field(
        default_factory=lambda: os.getenv("RHIZONOTE_REMOTE_ROOT", "")
    )
    # Merge policy
    conflict_tolerance_ms: int = Field(
        default_factory=lambda: int(
            os.getenv("RHIZONOTE_CONFLICT_TOLERANCE_MS", "2000")
        )
    )
    structural_winner: str = Field(
        default_factory=lambda: os.getenv(
            "RHIZONOTE_STRUCTURAL_WINNER", "local"
        ).lower()
    )
    # Batch sizes bound the number of concurrent remote requests
    download_batch_size: int = Field(
        default_factory=lambda: int(os.getenv("RHIZONOTE_DOWNLOAD_BATCH_SIZE", "10"))
    )
    upload_batch_size: int = Field(
        default_factory=lambda: int(os.getenv("RHIZONOTE_UPLOAD_BATCH_SIZE", "5"))
    )
    # Scheduler timings (milliseconds)
    debounce_ms: int = Field(
        default_factory=lambda: int(os.getenv("RHIZONOTE_DEBOUNCE_MS", "5000"))
    )
    min_sync_interval_ms: int = Field(
        default_factory=lambda: int(
            os.getenv("RHIZONOTE_MIN_SYNC_INTERVAL_MS", "30000")
        )
    )
    sync_interval_ms: int = Field(
        default_factory=lambda: int(os.getenv("RHIZONOTE_SYNC_INTERVAL_MS", "300000"))
    )
    cooldown_ms: int = Field(
        default_factory=lambda: int(os.getenv("RHIZONOTE_COOLDOWN_MS", "2000"))
    )
    startup_delay_ms: int = Field(
        default_factory=lambda: int(os.getenv("RHIZONOTE_STARTUP_DELAY_MS", "1500"))
    )
    # Soft-deleted items older than this are purged locally and remotely
    trash_retention_days: int = Field(
        default_factory=lambda: int(os.getenv("RHIZONOTE_TRASH_RETENTION_DAYS", "30"))
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("RHIZONOTE_LOG_LEVEL", "INFO").upper()
    )

    @model_validator(mode="after")
    def _validate_sync_config(self) -> "SyncConfig":
        """Validate batch sizes and merge policy settings."""
        if self.download_batch_size < 1:
            raise ValueError("download_batch_size must be >= 1")
        if self.upload_batch_size < 1:
            raise ValueError("upload_batch_size must be >= 1")
        if self.conflict_tolerance_ms < 0:
            raise ValueError("conflict_tolerance_ms must be >= 0")
        if self.structural_winner not in STRUCTURAL_WINNERS:
            raise ValueError(
                f"structural_winner must be one of {', '.join(STRUCTURAL_WINNERS)}"
            )
        if self.trash_retention_days < 0:
            raise ValueError("trash_retention_days must be >= 0")

        if self.dropbox_refresh_token and not self.dropbox_app_key:
            logger.warning(
                "RHIZONOTE_DROPBOX_REFRESH_TOKEN is set without "
                "RHIZONOTE_DROPBOX_APP_KEY; the refresh token will be ignored."
            )
        return self

    @property
    def trash_retention_ms(self) -> int:
        """Trash retention window in milliseconds."""
        return self.trash_retention_days * _DAY_MS

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

# Create a global config instance
config = SyncConfig()

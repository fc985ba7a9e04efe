"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Syncnite server settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database (sync run ledger)
    database_url: str = "sqlite+aiosqlite:///data/syncnite.db"

    # Paths
    data_dir: Path = Path("./data")

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=3003, ge=1, le=65535)

    # Plex (pull source)
    plex_server_url: str = ""
    plex_token: str = ""
    plex_client_identifier: str = "syncnite-server"
    plex_page_size: int = Field(default=200, ge=1, le=1000)
    http_timeout_seconds: float = Field(default=30.0, gt=0)

    # Apply phase
    media_download_concurrency: int = Field(default=4, ge=1, le=32)
    max_media_upload_bytes: int = Field(default=50 * 1024 * 1024, ge=1)

    @property
    def playnite_db_root(self) -> Path:
        """Entity documents pushed by the Playnite extension."""
        return self.data_dir / "db"

    @property
    def playnite_media_root(self) -> Path:
        """Media files pushed by the Playnite extension."""
        return self.data_dir / "libraryfiles"

    @property
    def plex_db_root(self) -> Path:
        return self.data_dir / "plex" / "db"

    @property
    def plex_media_root(self) -> Path:
        return self.data_dir / "plex" / "media"

    @property
    def snapshot_dir(self) -> Path:
        return self.data_dir / "snapshot"

    @property
    def installed_path(self) -> Path:
        """Ids of the games installed on the Playnite host."""
        return self.data_dir / "installed" / "playnite.installed.json"

    @property
    def plex_configured(self) -> bool:
        return bool(self.plex_server_url.strip() and self.plex_token.strip())

    def validate_runtime(self) -> None:
        """Validate settings that would otherwise fail deep inside a sync pass."""
        violations: list[str] = []
        server_url = self.plex_server_url.strip()
        if server_url and not server_url.lower().startswith(("http://", "https://")):
            violations.append("PLEX_SERVER_URL must start with http:// or https://")
        if self.data_dir.exists() and not self.data_dir.is_dir():
            violations.append(f"DATA_DIR exists but is not a directory: {self.data_dir}")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid configuration: {joined}")

"""Configuration management using pydantic-settings."""

from pathlib import Path
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CONTENT_MIRROR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Document store
    db_path: Path = Field(
        default=Path.home() / ".content-mirror" / "mirror.db",
        description="SQLite document store path",
    )

    # GitHub API
    github_api_base: str = Field(
        default="https://api.github.com",
        description="GitHub REST API base URL",
    )
    github_api_version: str = Field(
        default="2022-11-28",
        description="Value sent in the X-GitHub-Api-Version header",
    )
    http_timeout: float = Field(
        default=30.0,
        description="Per-request timeout in seconds",
    )

    # Webhooks
    webhook_secret: str = Field(
        default="",
        description="Shared secret used to sign webhook deliveries",
    )

    # Content layout
    content_root: str = Field(
        default="src/content",
        description="Directory holding one sub-directory per content collection",
    )
    config_path: str = Field(
        default="src/content/config.ts",
        description="Content collection configuration file",
    )
    content_extensions: List[str] = Field(
        default_factory=lambda: [".md", ".mdx"],
        description="File extensions treated as content files",
    )
    fallback_collection: str = Field(
        default="blog",
        description="Collection assigned to files outside any collection directory",
    )

    # Sync behaviour
    fetch_concurrency: int = Field(
        default=8,
        description="Maximum simultaneous file fetches during an import",
    )
    import_timeout: float = Field(
        default=300.0,
        description="Overall deadline for a full import in seconds",
    )
    webhook_timeout: float = Field(
        default=60.0,
        description="Overall deadline for a webhook reconciliation pass in seconds",
    )

    # HTTP Server
    http_host: str = Field(
        default="127.0.0.1",
        description="HTTP server host",
    )
    http_port: int = Field(
        default=8000,
        description="HTTP server port",
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Ensure database directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def is_webhook_configured(self) -> bool:
        """Check if webhook signature verification is possible."""
        return bool(self.webhook_secret)


# Global settings instance
settings = Settings()

"""Configuration management for Styleforge.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the STYLEFORGE_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (STYLEFORGE_* prefix)
2. .env file in the project root
3. Default values defined in StyleforgeConfig

Example .env file:
    STYLEFORGE_EVERART_API_KEY=everart-xxxxxxxx
    STYLEFORGE_CLOUDINARY_CLOUD_NAME=my-cloud
    STYLEFORGE_CLOUDINARY_API_KEY=1234567890
    STYLEFORGE_CLOUDINARY_API_SECRET=secret
    STYLEFORGE_POLL_INTERVAL_SECONDS=5

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from styleforge.core.config import config

    print(config.everart_base_url)
    print(config.poll_max_attempts * config.poll_interval_seconds)

Polling Budget
--------------
The generation tracker polls at most ``poll_max_attempts`` rounds separated
by ``poll_interval_seconds``.  The defaults (60 x 5s) bound a single apply
request to five minutes of waiting.  Both are product choices and can be
tuned per deployment.

Integrations
------------
- EverArt is required for every model and generation route.  Without
  ``everart_api_key`` those routes answer 400.
- Cloudinary is optional.  When any of the three credentials is missing the
  service keeps the provider's own (ephemeral) image URLs.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StyleforgeConfig(BaseSettings):
    """Main configuration for Styleforge.

    Attributes
    ----------
    EverArt Settings:
        everart_api_key : str | None
            Bearer token for the EverArt API
        everart_base_url : str
            Base URL of the EverArt REST API
        everart_timeout : float
            Per-request timeout in seconds for provider calls

    Cloudinary Settings:
        cloudinary_cloud_name, cloudinary_api_key, cloudinary_api_secret : str | None
            Credentials; all three are required to enable the artifact store
        cloudinary_folder : str
            Folder that promoted generations are uploaded into

    Polling Settings:
        poll_max_attempts : int
            Maximum number of status polling rounds per batch
        poll_interval_seconds : float
            Wait between polling rounds
        promote_all_artifacts : bool
            Promote every successful artifact instead of only the first

    Upload Settings:
        max_upload_bytes : int
            Maximum size of a single uploaded image
        max_training_images : int
            Maximum number of images accepted when creating a model

    Paths:
        data_dir : Path
            Directory holding the JSON record store

    Server Settings:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn
        log_level : Literal["debug", "info", "warning", "error"]
            Log level passed to uvicorn

    Examples
    --------
        >>> custom_config = StyleforgeConfig(
        ...     everart_api_key="everart-test",
        ...     poll_interval_seconds=0,
        ...     data_dir="/tmp/styleforge",
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STYLEFORGE_",
        case_sensitive=False,
    )

    # EverArt settings
    everart_api_key: str | None = Field(
        default=None,
        description="Bearer token for the EverArt API",
    )
    everart_base_url: str = Field(
        default="https://api.everart.ai/v1",
        description="Base URL of the EverArt REST API",
    )
    everart_timeout: float = Field(
        default=30.0,
        description="Per-request timeout in seconds for EverArt calls",
        gt=0,
    )

    # Cloudinary settings
    cloudinary_cloud_name: str | None = Field(default=None)
    cloudinary_api_key: str | None = Field(default=None)
    cloudinary_api_secret: str | None = Field(default=None)
    cloudinary_folder: str = Field(
        default="everart-generations",
        description="Cloudinary folder for promoted generations",
    )

    # Polling
    poll_max_attempts: int = Field(
        default=60,
        description="Maximum number of status polling rounds per batch",
        ge=1,
        le=1000,
    )
    poll_interval_seconds: float = Field(
        default=5.0,
        description="Seconds to wait between polling rounds",
        ge=0,
        le=60,
    )
    promote_all_artifacts: bool = Field(
        default=False,
        description="Promote every successful artifact instead of only the first",
    )

    # Uploads
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    max_training_images: int = Field(default=20, ge=1, le=100)

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding models.json and generations.json",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=7860,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(default="info")

    def __init__(self, **kwargs):
        """Initialize configuration and create the data directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def everart_configured(self) -> bool:
        """Whether an EverArt API key is available."""
        return bool(self.everart_api_key)

    @property
    def cloudinary_configured(self) -> bool:
        """Whether all three Cloudinary credentials are available."""
        return bool(
            self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret
        )


# Global configuration instance
# Loaded from STYLEFORGE_* environment variables and the .env file.
config = StyleforgeConfig()

"""Application settings and configuration management.

This module provides Pydantic-based settings management that loads
configuration from environment variables or a .env file. Settings include
the scratch directory for uploads, the upload size limit, CORS origins,
the listen port and the limits applied by the extraction handlers.

Example:
    Settings can be accessed via the cached get_settings() function:
        >>> from geoproc.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.storage_dir)

    Environment variables can override defaults:
        >>> PORT=8080
        >>> STORAGE_DIR=/custom/path/uploads
        >>> MAX_UPLOAD_SIZE_BYTES=1073741824
"""

import functools
import pathlib
from typing import Any

import pydantic
import pydantic_settings

DEFAULT_PORT = 3001
MAX_PORT = 65535


class Settings(pydantic_settings.BaseSettings):
    """Runtime configuration pulled from environment variables or defaults.

    All settings can be overridden via environment variables or .env file.
    The scratch directory is created on demand via ensure_directories().

    Attributes:
        storage_dir: Scratch directory for uploaded files and conversion
            output. Nothing written here outlives a request.
        max_upload_size_bytes: Maximum file upload size (default 100MiB).
        max_extract_bytes: Limit on the total uncompressed size of an
            archive extracted by the resolver (default 1GiB).
        allow_origins: List of allowed CORS origins (["*"] allows all).
        host: Interface the server binds to.
        port: Listen port. Values outside 0-65535 fall back to 3001.
        max_extract_features: Safety cap for extract-layer.
        sample_feature_count: Features sampled per layer by detailed-info.
        sample_field_limit: Properties kept per sampled feature.
        target_srs: Reference system extract-layer reprojects into.
        log_level: Minimum level for the loguru sink.

    Example:
        Create settings with custom values:
            >>> settings = Settings(
            ...     storage_dir=Path("/custom/uploads"),
            ...     max_upload_size_bytes=10 * 1024 * 1024,
            ... )
            >>> settings.ensure_directories()

        Or use environment variables:
            >>> export PORT=8080
            >>> export MAX_EXTRACT_FEATURES=500
            >>> settings = Settings()  # Loads from environment
    """

    storage_dir: pathlib.Path = pathlib.Path("/tmp/geoproc/uploads")
    max_upload_size_bytes: int = 100 * 1024 * 1024
    max_extract_bytes: int = 1024 * 1024 * 1024
    allow_origins: list[str] = ["*"]
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    max_extract_features: int = 10_000
    sample_feature_count: int = 3
    sample_field_limit: int = 10
    target_srs: str = "EPSG:4326"
    log_level: str = "INFO"

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @pydantic.field_validator("port", mode="before")
    @classmethod
    def _validate_port(cls, value: Any) -> int:
        """Fall back to the default port for anything outside 0-65535."""
        try:
            port = int(value)
        except (TypeError, ValueError):
            return DEFAULT_PORT
        if 0 <= port <= MAX_PORT:
            return port
        return DEFAULT_PORT

    def ensure_directories(self) -> None:
        """Create the scratch directory for uploads if it does not exist."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)


@functools.lru_cache
def get_settings() -> Settings:
    """Get cached settings instance with directories initialized.

    Settings are loaded from environment variables or .env file and cached
    for the lifetime of the application. The scratch directory is created
    on first call. Subsequent calls return the same cached instance.

    Returns:
        Settings instance with all configuration values populated and
        directories ensured to exist.
    """
    settings = Settings()
    settings.ensure_directories()
    return settings

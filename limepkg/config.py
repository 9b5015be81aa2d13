"""Runtime configuration — env-driven via pydantic-settings.

Reads from a .env file and LIMEPKG_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class LimeConfig(BaseSettings):
    """Settings for archive building and the lifecycle engine.

    Examples
    --------
    Override via environment::

        export LIMEPKG_LOG_LEVEL=DEBUG
        export LIMEPKG_TRIGGER_TIMEOUT_SECONDS=5
        export LIMEPKG_ROOT_PATH=/srv/root
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LIMEPKG_",
        env_file_encoding="utf-8",
    )

    log_level: str = "INFO"

    # Archive building
    compress_files: bool = True
    compression_level: int = 6
    read_chunk_size: int = 64 * 1024

    # Lifecycle engine
    trigger_timeout_seconds: float = 60.0
    trigger_workers: int = 4

    # Storage paths
    state_path: Path = Path(".limepkg/state.json")
    root_path: Path = Path(".limepkg/root")


# Module-level singleton; import as `from limepkg.config import config`
config = LimeConfig()

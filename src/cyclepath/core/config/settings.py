"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """CyclePath engine configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: there is no auth layer in front of the tools.
    cyclepath_host: str = "127.0.0.1"
    cyclepath_port: int = 8010
    cyclepath_log_level: str = "info"
    cyclepath_allow_insecure_bind: bool = False

    # Storage (cycles + patient milestones)
    db_path: str = "~/.cyclepath/cycles.db"

    # Encryption of user-entered notes
    encryption_key: str = ""

    # Reference seed data (templates, stage reference rows, content blocks).
    # Empty means the seed directory shipped with the package.
    seed_data_dir: str = ""

    # Stage detection
    fallback_window_days: int = 7

    # Progress estimate when a treatment type has no template
    default_cycle_length: int = 28


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()

"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Face health trainer configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default; the server has no auth layer.
    facehealth_host: str = "127.0.0.1"
    facehealth_port: int = 8001
    facehealth_log_level: str = "info"
    # Binding to a non-loopback host is refused unless this is set true.
    facehealth_allow_insecure_bind: bool = False

    # Storage
    models_dir: str = "~/.facehealth/models"
    snapshots_dir: str = "~/.facehealth/model_snapshots"
    captures_dir: str = ""  # empty: use generated mock captures
    audit_db_path: str = "~/.facehealth/audit.db"

    # Encryption (Fernet key; empty stores models as plain JSON)
    encryption_key: str = ""

    # Training
    default_model_type: Literal["linear", "forest"] = "linear"
    day_target_policy: Literal["latest", "mean"] = "latest"
    forest_tree_count: int = 50
    forest_max_depth: int = 5
    min_training_days: int = 7


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()

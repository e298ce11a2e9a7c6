"""
Runtime settings for the extraction engine.

Values come from the environment (a local .env is loaded first). The adaptive-mode
toggle and the environment selector are read once here and handed to the engine as
read-only inputs.
"""

import os
from pathlib import Path
from typing import Optional

import dotenv
from pydantic import BaseModel, Field

dotenv.load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_path(name: str) -> Optional[Path]:
    value = os.getenv(name)
    return Path(value) if value else None


class EngineSettings(BaseModel):
    """Settings shared by every component the engine builds."""
    environment: str = Field("development", description="Environment profile name")
    adaptive_mode: bool = Field(True, description="Use learned patterns when building configuration")
    pattern_db_path: Path = Field(DEFAULT_DATA_DIR / "api_patterns_database.json")
    pattern_backup_path: Optional[Path] = Field(None, description="Defaults to a sibling *_backup.json")
    auto_save_every: int = Field(50, ge=1, description="Persist after this many observations")
    config_cache_ttl: float = Field(300.0, ge=0, description="Snapshot cache lifetime in seconds")
    best_pattern_limit: int = Field(20, ge=1)
    tie_band: float = Field(0.1, ge=0.0, le=1.0, description="Success rates this close rank as tied")
    cleanup_min_success_rate: float = Field(0.1, ge=0.0, le=1.0)
    cleanup_min_attempts: int = Field(10, ge=0)
    cleanup_retention_days: int = Field(30, ge=0)
    max_samples: int = Field(3, ge=0)
    observation_queue_size: int = Field(500, ge=1)
    vocabulary_path: Optional[Path] = None
    export_dir: Path = Field(DEFAULT_DATA_DIR / "exports")
    gcs_bucket: Optional[str] = None
    gcs_export_prefix: str = "pattern_exports"

    @property
    def backup_path(self) -> Path:
        if self.pattern_backup_path:
            return self.pattern_backup_path
        return self.pattern_db_path.with_name(f"{self.pattern_db_path.stem}_backup.json")

    @classmethod
    def from_env(cls) -> "EngineSettings":
        values = {
            "environment": os.getenv("EXTRACTION_ENV", "development"),
            "adaptive_mode": _env_bool("ADAPTIVE_MODE", True),
            "auto_save_every": int(os.getenv("PATTERN_AUTO_SAVE_EVERY", "50")),
            "config_cache_ttl": float(os.getenv("CONFIG_CACHE_TTL", "300")),
            "best_pattern_limit": int(os.getenv("BEST_PATTERN_LIMIT", "20")),
            "tie_band": float(os.getenv("PATTERN_TIE_BAND", "0.1")),
            "cleanup_min_success_rate": float(os.getenv("CLEANUP_MIN_SUCCESS_RATE", "0.1")),
            "cleanup_min_attempts": int(os.getenv("CLEANUP_MIN_ATTEMPTS", "10")),
            "cleanup_retention_days": int(os.getenv("CLEANUP_RETENTION_DAYS", "30")),
            "observation_queue_size": int(os.getenv("OBSERVATION_QUEUE_SIZE", "500")),
            "gcs_bucket": os.getenv("GCS_BUCKET_NAME") or None,
            "gcs_export_prefix": os.getenv("GCS_EXPORT_PREFIX", "pattern_exports"),
            "pattern_backup_path": _env_path("PATTERN_BACKUP_PATH"),
            "vocabulary_path": _env_path("EXTRACTION_VOCABULARY_PATH"),
        }
        db_path = _env_path("PATTERN_DB_PATH")
        if db_path:
            values["pattern_db_path"] = db_path
        export_dir = _env_path("PATTERN_EXPORT_DIR")
        if export_dir:
            values["export_dir"] = export_dir
        return cls(**values)

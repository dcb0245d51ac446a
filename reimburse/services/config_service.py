"""Environment-based configuration for the review workflow."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[2]


class WorkflowSettings(BaseModel):
    """Runtime settings for stores, retries, the event log and token verification."""

    database_path: str = Field(
        default=str(BASE_DIR / "reimburse" / "data" / "reimburse.db"),
        description="SQLite file backing the record store and user directory.",
    )
    max_write_retries: int = Field(
        default=5,
        ge=1,
        description="Attempts for a versioned write before ConcurrencyConflict surfaces.",
    )
    retry_delay_ms: int = Field(
        default=20,
        ge=0,
        description="Base delay between versioned write attempts (grows linearly).",
    )
    log_dir: str = Field(
        default=str(BASE_DIR / "artifacts" / "logs"),
        description="Directory for the JSON-lines workflow event log.",
    )
    jwt_secret: str = Field(default="dev-secret-key-change-in-production")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_hours: int = Field(default=24, ge=1)


def load_settings() -> WorkflowSettings:
    """Build settings from the environment, reading .env first if present."""
    load_dotenv()

    overrides = {}
    env_map = {
        "REIMBURSE_DB_PATH": "database_path",
        "REIMBURSE_MAX_WRITE_RETRIES": "max_write_retries",
        "REIMBURSE_RETRY_DELAY_MS": "retry_delay_ms",
        "REIMBURSE_LOG_DIR": "log_dir",
        "JWT_SECRET": "jwt_secret",
        "JWT_ALGORITHM": "jwt_algorithm",
        "ACCESS_TOKEN_EXPIRE_HOURS": "access_token_expire_hours",
    }
    for env_name, field_name in env_map.items():
        value = os.getenv(env_name)
        if value:
            overrides[field_name] = value

    settings = WorkflowSettings(**overrides)
    logger.info(
        "Workflow settings loaded",
        extra={"database_path": settings.database_path, "max_write_retries": settings.max_write_retries},
    )
    return settings


@lru_cache(maxsize=1)
def get_settings() -> WorkflowSettings:
    """Process-wide settings (cached; call get_settings.cache_clear() in tests)."""
    return load_settings()

"""
Settings read from the process environment, with `.env` support.

    PROPVAULT_DATABASE_URL       SQLAlchemy URL (default sqlite:///propvault.db)
    PROPVAULT_LOG_LEVEL          logging level name (default INFO)
    PROPVAULT_USER               recorded as `user_id` on audit entries
"""

from __future__ import annotations

import os

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    database_url: str = "sqlite:///propvault.db"
    log_level: str = "INFO"
    user: str | None = None

    model_config = {"frozen": True}


def load_settings(env_file: str | None = None) -> Settings:
    load_dotenv(env_file or find_dotenv(usecwd=True))
    defaults = Settings()
    return Settings(
        database_url=os.environ.get("PROPVAULT_DATABASE_URL", defaults.database_url),
        log_level=os.environ.get("PROPVAULT_LOG_LEVEL", defaults.log_level).upper(),
        user=os.environ.get("PROPVAULT_USER") or None,
    )

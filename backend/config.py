from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the saturation service.

    Every value can be set through a `SATURATION_`-prefixed environment
    variable, e.g. `SATURATION_DB_PATH=/data/saturation.db`.
    """

    model_config = SettingsConfigDict(env_prefix="SATURATION_", case_sensitive=False)

    app_name: str = "Saturation Protocol Backend"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Comma-separated list of origins, e.g.
    #   http://localhost:8501,http://127.0.0.1:8501
    cors_origins_raw: str = Field(
        "http://localhost:8501,http://127.0.0.1:8501,http://localhost:3000,http://127.0.0.1:3000",
    )

    # SQLite database file for evaluations, measures and the audit log.
    db_path: str = "saturation.db"

    clinical_timezone: str = "America/Santiago"

    # Number of most recent ORANGE/RED evaluations whose measures stay editable.
    edit_window: int = Field(2, ge=1)

    history_limit: int = Field(30, ge=1, le=500)

    # Optional JSON file overriding the built-in scoring table.
    scoring_table_path: Optional[str] = None

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.cors_origins_raw.split(",") if o.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance.

    Call `get_settings.cache_clear()` after changing the environment in
    tests.
    """

    return Settings()  # type: ignore[call-arg]

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    app_env: str
    db_path: str
    llm_timeout_seconds: float
    feed_timeout_seconds: float
    log_level: str

    @staticmethod
    def from_env() -> "Settings":
        def _f(name: str, default: str) -> float:
            return float(os.getenv(name, default).strip())

        return Settings(
            app_env=os.getenv("APP_ENV", "dev").strip(),
            db_path=os.getenv("DB_PATH", "_local/data/reader.db").strip(),
            llm_timeout_seconds=_f("LLM_TIMEOUT_SECONDS", "30"),
            feed_timeout_seconds=_f("FEED_TIMEOUT_SECONDS", "30"),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        )

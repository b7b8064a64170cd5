from __future__ import annotations

import os
from functools import lru_cache


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Application configuration exposed via lazy singleton."""

    def __init__(self) -> None:
        default_db = "sqlite:///./dev.db"
        self.database_url = os.getenv("DATABASE_URL", default_db)
        self.test_database_url = os.getenv("TEST_DATABASE_URL")
        self.app_name = os.getenv("APP_NAME", "Collab Realtime")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        self.jwt_secret = os.getenv("JWT_SECRET")
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.jwt_audience = os.getenv("JWT_AUDIENCE")
        self.allow_anon = _env_flag("ALLOW_ANON", False)

        origins = os.getenv("CORS_ORIGINS", "*")
        self.cors_origins = [o.strip() for o in origins.split(",") if o.strip()]
        self.socketio_path = os.getenv("SOCKETIO_PATH", "socket.io")

        self.meeting_validation = _env_flag("MEETING_VALIDATION", True)
        self.default_max_participants = int(os.getenv("DEFAULT_MAX_PARTICIPANTS", "100"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

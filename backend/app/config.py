import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/fitgym')
        # Service credential for the row store; used as the connection password when present.
        self.service_key = (os.getenv("ROW_STORE_SERVICE_KEY") or "").strip()
        # Public key the browser client needs; the backend only hands it out.
        self.anon_key = (os.getenv("ROW_STORE_ANON_KEY") or "").strip()
        self.api_base_url = (os.getenv("API_BASE_URL") or "http://localhost:5001/api").strip()
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://localhost:5173"],
        )
        self.api_version = os.getenv("APP_VERSION", "2.0.0").strip() or "2.0.0"

        self.pool_min_size = _env_int("DB_POOL_MIN_SIZE", 1)
        self.pool_max_size = _env_int("DB_POOL_MAX_SIZE", 10)

        self.staff_session_days = _env_int("STAFF_SESSION_DAYS", 90)
        self.user_session_days = _env_int("USER_SESSION_DAYS", 7)

        self.pin_max_attempts = _env_int("PIN_MAX_ATTEMPTS", 5)
        self.pin_lockout_minutes = _env_int("PIN_LOCKOUT_MINUTES", 15)
        self.pin_attempt_window_minutes = _env_int("PIN_ATTEMPT_WINDOW_MINUTES", 5)
        self.pin_purge_interval_minutes = _env_int("PIN_PURGE_INTERVAL_MINUTES", 30)

    @property
    def is_dev(self) -> bool:
        return self.env in {"local", "dev"}

    def validate(self) -> None:
        # Only production builds must carry the full row-store configuration.
        if self.env != "production":
            return
        required = {
            "DATABASE_URL": os.getenv("DATABASE_URL"),
            "ROW_STORE_SERVICE_KEY": self.service_key,
            "ROW_STORE_ANON_KEY": self.anon_key,
            "API_BASE_URL": os.getenv("API_BASE_URL"),
        }
        missing = [name for name, value in required.items() if not (value or "").strip()]
        if missing:
            raise RuntimeError(f"missing required configuration: {', '.join(missing)}")


settings = Settings()

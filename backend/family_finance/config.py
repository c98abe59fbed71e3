import os
from dataclasses import dataclass, field


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    db_path: str = field(default_factory=lambda: os.getenv("DB_PATH", "./family_finance.db"))
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8080")))
    upload_dir: str = field(default_factory=lambda: os.getenv("UPLOAD_DIR", "./uploads"))
    max_upload_bytes: int = field(default_factory=lambda: int(os.getenv("MAX_UPLOAD_BYTES", str(10 << 20))))
    store_open_timeout: float = field(default_factory=lambda: float(os.getenv("STORE_OPEN_TIMEOUT", "1.0")))
    store_busy_timeout: float = field(default_factory=lambda: float(os.getenv("STORE_BUSY_TIMEOUT", "5.0")))
    strict_updates: bool = field(default_factory=lambda: _env_flag("STRICT_UPDATES"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").strip().upper())
    log_json: bool = field(default_factory=lambda: _env_flag("LOG_JSON", "true"))


def load_settings(**overrides) -> Settings:
    return Settings(**overrides)


settings = load_settings()

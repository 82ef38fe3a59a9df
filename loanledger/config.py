import logging
import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "3000"))
    api_prefix: str = os.getenv("API_PREFIX", "/api/v1")
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    # Database settings
    db_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    sqlite_timeout: float = float(os.getenv("SQLITE_TIMEOUT", "30"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Loan Ledger")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the CLI and the ASGI app."""
    logging.basicConfig(
        level=(level or settings.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

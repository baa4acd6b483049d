"""
Application Settings
====================

Runtime configuration for AccessHub, read from the environment
(prefix ``ACCESSHUB_``) and an optional ``.env`` file in the project root.
"""

from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

if ENV_FILE.exists():
    load_dotenv(ENV_FILE)


class Settings(BaseSettings):
    """AccessHub settings"""

    model_config = SettingsConfigDict(
        env_prefix="ACCESSHUB_",
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service info
    service_name: str = "accesshub"
    version: str = "0.1.0"
    environment: str = "development"

    # Database
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'accesshub.db'}"
    sql_echo: bool = False
    sqlite_busy_timeout_seconds: float = 30.0  # how long a writer waits for the lock

    # Auth tokens and cookies
    secret_key: str = "development-secret-key-change-in-production"
    token_algorithm: str = "HS256"
    token_expire_minutes: int = 24 * 60
    cookie_name: str = "auth_token"
    cookie_secure: bool = False

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 8080
    allowed_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Workflow
    expiry_sweep_interval_seconds: int = 60  # 0 disables the background sweep
    system_role_hierarchy_floor: int = 10
    default_access_level: str = "read"

    # Logging
    log_level: str = "INFO"


settings = Settings()

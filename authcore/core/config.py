from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./authcore.db"
    sql_echo: bool = False
    auto_create_db: bool = True

    # Application
    app_name: str = "AuthCore API"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    # JWT / token lifetimes
    secret_key: str = "change-this-secret-key-in-production-make-it-very-long-and-random"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    refresh_token_retention_days: int = 30
    verification_token_expire_hours: int = 24
    verification_resend_cooldown_minutes: int = 5
    password_reset_token_expire_minutes: int = 60
    password_reset_base_cooldown_minutes: int = 15
    bcrypt_rounds: int = 12

    # Links embedded in outgoing emails
    frontend_url: str = "http://localhost:5173"

    # Email
    email_backend: str = "console"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    smtp_use_ssl: bool = False
    smtp_from_email: Optional[str] = None
    smtp_from_name: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

"""
Core configuration module using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = "sqlite:///./estate_chat.db"
    seed_demo_data: bool = False

    # Security Configuration
    jwt_secret_key: str = "changeme-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    bcrypt_rounds: int = 12

    # WebSocket Configuration
    ws_path: str = "/ws"
    ws_heartbeat_interval_seconds: float = 30.0
    ws_stats_interval_seconds: float = 60.0
    ws_require_active_account: bool = True
    ws_welcome_message: str = "Connected to BDSTHAT WebSocket server"

    # Application Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    log_level: str = "INFO"
    log_json: bool = True
    otlp_endpoint: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()

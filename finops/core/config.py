"""
Configuration management module for the FinOps billing insights package.
Loads and validates environment variables with type safety using Pydantic.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Load environment variables from .env file
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


class BillingConfig(BaseSettings):
    """Record normalization and time-window configuration"""

    model_config = SettingsConfigDict(env_prefix="FINOPS_", env_file=".env", case_sensitive=False, extra="ignore")

    primary_currency_field: str = Field(default="USD", min_length=1)
    invoice_epoch_year: int = Field(default=2000, ge=1970)
    invoice_window_buffer_months: int = Field(default=1, ge=0, le=12)


class APIConfig(BaseSettings):
    """Billing API (HTTP retrieval collaborator) configuration"""

    model_config = SettingsConfigDict(env_prefix="FINOPS_API_", env_file=".env", case_sensitive=False, extra="ignore")

    base_url: str = Field(default="https://api.digitalocean.com/v2")
    token: Optional[str] = Field(default=None)
    page_size: int = Field(default=100, ge=1, le=200)
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        """Normalize base URL so paths can be appended"""
        return v.rstrip("/")


class CacheConfig(BaseSettings):
    """Local cache (persistence collaborator) configuration"""

    model_config = SettingsConfigDict(env_prefix="FINOPS_CACHE_", env_file=".env", case_sensitive=False, extra="ignore")

    path: Path = Field(default=Path.home() / ".cache" / "finops")
    stale_hours: float = Field(default=24.0, gt=0)


class AppConfig(BaseSettings):
    """Application-wide configuration"""

    model_config = SettingsConfigDict(env_prefix="FINOPS_", env_file=".env", case_sensitive=False, extra="ignore")

    env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("env")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment is valid"""
        valid_envs = ["development", "staging", "production", "testing"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment. Must be one of: {valid_envs}")
        return v.lower()


class Settings:
    """Main settings class that combines all configuration sections"""

    def __init__(self):
        self.billing = BillingConfig()
        self.api = APIConfig()
        self.cache = CacheConfig()
        self.app = AppConfig()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.app.env == "production"

    def to_dict(self, include_sensitive: bool = False) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        config = {
            "app": {
                "environment": self.app.env,
                "log_level": self.app.log_level,
                "log_json": self.app.log_json,
                "host": self.app.host,
                "port": self.app.port,
            },
            "billing": {
                "primary_currency_field": self.billing.primary_currency_field,
                "invoice_epoch_year": self.billing.invoice_epoch_year,
                "invoice_window_buffer_months": self.billing.invoice_window_buffer_months,
            },
            "api": {
                "base_url": self.api.base_url,
                "page_size": self.api.page_size,
                "timeout_seconds": self.api.timeout_seconds,
                "token_configured": bool(self.api.token),
            },
            "cache": {
                "path": str(self.cache.path),
                "stale_hours": self.cache.stale_hours,
            },
        }

        if include_sensitive and self.api.token:
            # Only include sensitive data if explicitly requested
            config["api"]["token"] = self.api.token[:6] + "..."

        return config


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This function uses LRU cache to ensure we only create one Settings instance
    throughout the application lifecycle.

    Returns:
        Settings: The application settings instance

    Example:
        >>> from finops.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.billing.primary_currency_field)
        'USD'
    """
    return Settings()

"""Service settings read from the environment (and an optional .env file)."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway, database and HTTP settings of the donation service."""

    # Pix gateway configuration
    pix_client_id: str = Field(..., description="Gateway OAuth client id")
    pix_client_secret: str = Field(..., description="Gateway OAuth client secret")
    pix_key: str = Field(..., description="Receiver Pix key used in charges")
    pix_sandbox: bool = Field(default=False, description="Use the gateway sandbox")
    pix_base_url: str = Field(
        default="https://pix.api.efipay.com.br", description="Gateway production URL"
    )
    pix_sandbox_url: str = Field(
        default="https://pix-h.api.efipay.com.br", description="Gateway sandbox URL"
    )
    pix_certificate_path: Optional[str] = Field(
        default=None, description="PEM file with the mTLS client certificate and key"
    )
    pix_certificate_base64: Optional[str] = Field(
        default=None, description="Base64-encoded PKCS#12 client certificate"
    )
    pix_certificate_password: str = Field(default="", description="PKCS#12 password")
    pix_webhook_url: Optional[str] = Field(
        default=None, description="Public webhook URL registered at startup"
    )
    pix_charge_expiration_seconds: int = Field(
        default=3600, description="Lifetime of an immediate charge (seconds)"
    )
    pix_token_refresh_margin_seconds: int = Field(
        default=60, description="Refresh the access token this long before expiry"
    )

    # Database Configuration
    database_url: str = Field(..., description="Async SQLAlchemy connection URL")
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="pix-donations", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=1, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:5173",
        description="CORS allowed origins (comma-separated)"
    )

    # Live notifications
    sse_keepalive_seconds: int = Field(
        default=30, description="Keep-alive interval for live notification streams"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("pix_base_url", "pix_sandbox_url")
    @classmethod
    def validate_gateway_url(cls, v: str) -> str:
        """Gateway endpoints are only reachable over mutual TLS."""
        if not v.startswith("https://"):
            raise ValueError("Gateway URL must use https")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def gateway_base_url(self) -> str:
        """Base URL of the gateway environment in use."""
        return self.pix_sandbox_url if self.pix_sandbox else self.pix_base_url

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()

"""
Configuration settings for the application
"""
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Core authentication and security
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")

    # Environment configuration
    env: Optional[str] = Field(default="development", alias="ENV")

    # Infrastructure configuration
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./hireon.db", alias="DATABASE_URL")

    # Razorpay billing configuration
    razorpay_key_id: Optional[str] = Field(default=None, alias="RAZORPAY_KEY_ID")
    razorpay_key_secret: Optional[str] = Field(default=None, alias="RAZORPAY_KEY_SECRET")
    razorpay_webhook_secret: Optional[str] = Field(default=None, alias="RAZORPAY_WEBHOOK_SECRET")

    # Google Sign-In
    google_client_id: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_ID")

    # Transactional email (Resend)
    resend_api_key: Optional[str] = Field(default=None, alias="RESEND_API_KEY")
    email_from: str = Field(default="HireOn <no-reply@hireon.app>", alias="EMAIL_FROM")
    password_reset_ttl_minutes: int = Field(default=60, alias="PASSWORD_RESET_TTL_MINUTES")

    # Frontend configuration
    frontend_url: str = Field(default="http://localhost:5173", alias="FRONTEND_URL")
    allowed_origins: str = Field(
        default="http://localhost:5173,http://localhost:5180",
        alias="ALLOWED_ORIGINS",
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_window_seconds: int = Field(default=15 * 60, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_max_requests: int = Field(default=100, alias="RATE_LIMIT_MAX_REQUESTS")
    auth_rate_limit_max_requests: int = Field(default=5, alias="AUTH_RATE_LIMIT_MAX_REQUESTS")

    # Desktop app distribution
    desktop_deep_link_scheme: str = Field(default="hireon", alias="DESKTOP_DEEP_LINK_SCHEME")
    download_windows_url: Optional[str] = Field(
        default="https://github.com/nikhilmangla/hireon-desktop/releases/latest/download/HireOn-Setup.exe",
        alias="DOWNLOAD_WINDOWS_URL",
    )
    download_mac_url: Optional[str] = Field(
        default="https://github.com/nikhilmangla/hireon-desktop/releases/latest/download/HireOn.dmg",
        alias="DOWNLOAD_MAC_URL",
    )

    # Background jobs
    subscription_sweep_interval_seconds: int = Field(default=3600, alias="SUBSCRIPTION_SWEEP_INTERVAL_SECONDS")
    reset_token_gc_interval_seconds: int = Field(default=3600, alias="RESET_TOKEN_GC_INTERVAL_SECONDS")

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from the comma-separated environment variable."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.env and settings.env.lower() == "production")


def validate_startup_settings() -> None:
    """
    Fail fast on configuration the service cannot run without.

    Only enforced in production; development and tests run with whatever is set
    and the individual features degrade (or raise) on use.
    """
    if not IS_PRODUCTION:
        return

    missing = []
    if not settings.jwt_secret_key:
        missing.append("JWT_SECRET_KEY")
    if not settings.database_url:
        missing.append("DATABASE_URL")
    if missing:
        raise RuntimeError(f"Missing required configuration in production: {', '.join(missing)}")

    if "sqlite" in settings.database_url.lower():
        raise RuntimeError("SQLite is forbidden in production. Use a PostgreSQL DATABASE_URL.")

"""
ACMS Application Configuration

Configuration management with environment variable support.
Implements secure defaults and validation for all settings.
"""

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation and secure defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Environment settings
    ENVIRONMENT: str = Field(
        default="development", description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_JSON: bool = Field(default=False, description="Render logs as JSON lines")

    # Redis configuration
    REDIS_URL: str = Field(
        default="redis://localhost:6379", description="Redis connection URL"
    )
    REDIS_PASSWORD: Optional[str] = Field(
        default=None, description="Redis password (overrides the URL password)"
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=10, ge=1, le=100, description="Redis connection pool size"
    )
    REDIS_CONNECTION_TIMEOUT: float = Field(
        default=5.0, gt=0, le=60, description="Redis connect timeout in seconds"
    )
    REDIS_OPERATION_TIMEOUT: float = Field(
        default=2.0, gt=0, le=60, description="Per-call Redis timeout in seconds"
    )

    # Circuit breaker settings
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = Field(
        default=5, ge=1, le=50, description="Circuit breaker failure threshold"
    )
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT: float = Field(
        default=30.0,
        ge=1,
        le=600,
        description="Circuit breaker recovery timeout in seconds",
    )

    # Principal cache
    PRINCIPAL_CACHE_TTL: int = Field(
        default=15 * 60,
        ge=1,
        le=86400,
        description="Seconds a cached principal snapshot stays valid",
    )

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable rate limiting")
    RATE_LIMIT_WINDOW_SECONDS: int = Field(
        default=60, ge=1, le=86400, description="Fixed window length in seconds"
    )
    RATE_LIMIT_GENERAL_MAX: int = Field(
        default=100, ge=1, description="Requests per window per client address"
    )
    RATE_LIMIT_AUTH_MAX: int = Field(
        default=5,
        ge=1,
        description="Authentication requests per window per client address",
    )
    RATE_LIMIT_USER_MAX: int = Field(
        default=200, ge=1, description="Requests per window per authenticated user"
    )
    RATE_LIMIT_ATOMIC_INCREMENT: bool = Field(
        default=False,
        description="Use a server-side script for increment-and-expire",
    )
    RATE_LIMIT_EXCLUDE_PATHS: str = Field(
        default="/health,/",
        description="Paths skipped by the address limiter (comma-separated)",
    )
    RATE_LIMIT_TRUST_PROXY_HEADERS: bool = Field(
        default=False,
        description="Take the client address from X-Forwarded-For / X-Real-IP",
    )
    AUTH_PATH_PREFIX: str = Field(
        default="/api/auth", description="Path prefix of authentication endpoints"
    )

    # Security configuration
    JWT_SECRET: str = Field(
        ...,
        min_length=32,
        description="Secret used to verify bearer tokens",
    )
    JWT_ALGORITHM: str = Field(default="HS256", description="Token signing algorithm")
    JWT_IDENTITY_CLAIM: str = Field(
        default="userId", description="Token claim carrying the user identity"
    )
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="CORS allowed origins (comma-separated)",
    )

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value."""
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @field_validator("REDIS_URL")
    @classmethod
    def validate_redis_url(cls, v):
        """Validate Redis URL scheme."""
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must be a redis://, rediss:// or unix:// URL")
        return v

    @field_validator("AUTH_PATH_PREFIX")
    @classmethod
    def validate_auth_path_prefix(cls, v):
        """Auth prefix must be an absolute path."""
        if not v.startswith("/"):
            raise ValueError("AUTH_PATH_PREFIX must start with '/'")
        return v.rstrip("/") or "/"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> List[str]:
        """Get CORS origins as list."""
        return [
            origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()
        ]

    @property
    def rate_limit_exclude_paths_list(self) -> List[str]:
        """Get rate limit exclusions as list."""
        return [
            path.strip()
            for path in self.RATE_LIMIT_EXCLUDE_PATHS.split(",")
            if path.strip()
        ]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

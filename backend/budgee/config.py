from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional


class Settings(BaseSettings):
    # Security: SECRET_KEY must be provided via environment variable
    # Generate with: python -c "import secrets; print(secrets.token_urlsafe(32))"
    SECRET_KEY: str  # REQUIRED - no default for security
    ALGORITHM: str = "HS256"

    # Database configuration
    DATABASE_URL: str  # PostgreSQL URL (required)

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080

    # Background job / Redis configuration
    REDIS_URL: str = "redis://redis:6379/0"

    # Plaid configuration
    PLAID_CLIENT_ID: Optional[str] = None
    PLAID_SECRET: Optional[str] = None
    PLAID_ENVIRONMENT: str = "sandbox"  # sandbox or production
    PLAID_QUEUE_NAME: str = "plaid_sync"
    PLAID_JOB_TIMEOUT: int = 1800  # 30 minutes
    PLAID_SYNC_PAGE_SIZE: int = 500
    PLAID_WEBHOOK_VERIFY: bool = True
    PLAID_WEBHOOK_MAX_AGE_SECONDS: int = 300

    # Recurring sync of every linked item
    DAILY_SYNC_INTERVAL_HOURS: int = 24

    # Query cache
    CACHE_BACKEND: str = "redis"  # redis or memory
    CACHE_TTL_SECONDS: int = 3600
    CACHE_KEY_PREFIX: str = "budgee:cache"

    @field_validator("SECRET_KEY")
    @classmethod
    def _validate_secret_key(cls, value):
        """
        Validate SECRET_KEY for security best practices.
        """
        if not value or len(value) < 32:
            raise ValueError(
                "SECRET_KEY must be at least 32 characters long. "
                "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )

        insecure_values = [
            "your-secret-key",
            "change-this",
            "secret",
            "password",
            "123456",
            "changeme"
        ]
        value_lower = value.lower()
        for insecure in insecure_values:
            if insecure in value_lower:
                raise ValueError(
                    f"SECRET_KEY contains insecure pattern '{insecure}'. "
                    "Please generate a secure random key."
                )

        return value

    @field_validator("PLAID_SYNC_PAGE_SIZE")
    @classmethod
    def _clamp_page_size(cls, value):
        # /transactions/sync accepts 1..500
        if value < 1:
            return 1
        return min(value, 500)

    @field_validator("CACHE_BACKEND")
    @classmethod
    def _validate_cache_backend(cls, value):
        normalized = (value or "").strip().lower()
        if normalized not in ("redis", "memory"):
            raise ValueError("CACHE_BACKEND must be 'redis' or 'memory'")
        return normalized

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore extra environment variables not defined in the model


settings = Settings()

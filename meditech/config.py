"""
MediTech - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and connection strings are loaded from environment variables.

Security: No secrets are hardcoded. Use .env for local development.
Settings are handed to each component at construction time, never read
from module globals inside the security core.
"""

from typing import List

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(RuntimeError):
    """Raised at startup when required security configuration is invalid."""


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    
    Attributes:
        DATABASE_URL: SQLAlchemy URL of the record store
        REDIS_URL: Redis URL of the shared revocation cache
        JWT_SECRET: Signing secret for access tokens
        JWT_REFRESH_SECRET: Signing secret for refresh tokens (must differ)
        ENCRYPTION_KEY: 32-byte symmetric key for PHI field encryption
        ALLOWED_ORIGINS: CORS allowed origins for the frontend
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )
    
    # Database (PostgreSQL for production, SQLite for development)
    DATABASE_URL: str = "sqlite:///./meditech.db"
    
    # Revocation cache
    REDIS_URL: str = "redis://localhost:6379/0"
    
    # Tokens
    JWT_SECRET: str = ""  # Must be set via environment
    JWT_REFRESH_SECRET: str = ""  # Must be set via environment
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    DENYLIST_TTL_SECONDS: int = 3600
    
    # Credentials
    BCRYPT_ROUNDS: int = 12
    MAX_FAILED_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 30
    
    # PHI encryption
    ENCRYPTION_KEY: str = ""  # Must be set via environment
    
    # Audit trail
    AUDIT_RETENTION_DAYS: int = 2555  # ~7 years
    AUDIT_SWEEP_INTERVAL_HOURS: int = 24  # 0 disables the in-process sweep
    
    # HTTP
    API_PREFIX: str = "/api/v1"
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]
    
    # Logging
    LOG_JSON: bool = False
    LOG_LEVEL: str = "INFO"
    
    @model_validator(mode="after")
    def _distinct_signing_secrets(self) -> "Settings":
        if self.JWT_SECRET and self.JWT_SECRET == self.JWT_REFRESH_SECRET:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        return self
    
    def validate_security(self) -> None:
        """
        Fail fast on missing secrets.
        
        Called from the application lifespan so a misconfigured process
        never starts serving requests.
        
        Raises:
            ConfigurationError: If a signing secret is missing
        """
        if not self.JWT_SECRET or not self.JWT_REFRESH_SECRET:
            raise ConfigurationError(
                "JWT_SECRET and JWT_REFRESH_SECRET must be set"
            )


def get_settings() -> Settings:
    """Load settings from the environment."""
    return Settings()

"""
Centralized configuration management for the LinkRanger usage service.

This module provides a Pydantic Settings-based configuration system that:
- Validates environment variables at startup
- Provides type coercion (strings to ints, bools, JSON mappings)
- Groups related settings for better organization
- Supports .env file loading

Usage:
    from src.config import get_settings

    settings = get_settings()
    if settings.storage_backend == "postgres":
        ...
"""

from functools import lru_cache
from typing import Dict, List, Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


TEST_ACCOUNT_PLAN_VALUES = ("free", "plus", "pro", "unlimited")


# =============================================================================
# Usage Metering Settings
# =============================================================================


class UsageSettings(BaseSettings):
    """Configuration for AI usage metering and plan enforcement."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    usage_stats_cache_ttl_seconds: int = Field(
        default=120,
        ge=0,
        description="Client-side TTL for cached usage statistics",
    )
    usage_resource_cache_ttl_seconds: int = Field(
        default=60,
        ge=0,
        description="Client-side TTL for cached per-resource usage",
    )
    usage_cache_max_size: int = Field(
        default=500,
        ge=1,
        description="Maximum number of cached usage entries",
    )
    analysis_min_length: int = Field(
        default=80,
        ge=1,
        description="Minimum characters for an AI analysis to count as billable",
    )
    supporting_content_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Per-fetch timeout for supporting content",
    )
    reset_anchor_fallback_day: int = Field(
        default=11,
        ge=1,
        le=31,
        description="Day of month used for the AI reset date when no plan start date is known",
    )
    test_account_plans: Dict[str, str] = Field(
        default_factory=dict,
        description="JSON mapping of Firebase UID to free|plus|pro|unlimited",
    )
    upgrade_url: str = Field(
        default="/plans",
        description="Where quota-exceeded responses point the user",
    )

    @field_validator("test_account_plans")
    @classmethod
    def validate_test_account_plans(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Reject unknown plan names in the allowlist."""
        for uid, plan in v.items():
            if plan not in TEST_ACCOUNT_PLAN_VALUES:
                raise ValueError(
                    f"Invalid test account plan '{plan}' for {uid}. "
                    f"Must be one of: {', '.join(TEST_ACCOUNT_PLAN_VALUES)}"
                )
        return v


# =============================================================================
# LLM Provider Settings
# =============================================================================


class LLMSettings(BaseSettings):
    """Configuration for the analysis engine provider."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        description="OpenAI API key for GPT models",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model to use",
    )
    llm_api_timeout: int = Field(
        default=60,
        ge=1,
        le=600,
        description="Timeout in seconds for LLM API requests",
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.openai_api_key)


# =============================================================================
# Database Settings (Postgres)
# =============================================================================


class DatabaseSettings(BaseSettings):
    """Configuration for the Postgres usage ledger."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: Optional[str] = Field(
        default=None,
        description="Postgres connection URL (pooler is fine)",
    )
    database_url_direct: Optional[str] = Field(
        default=None,
        description="Direct (non-pooler) Postgres URL for long-lived backends",
    )
    database_pool_min_size: int = Field(default=1, ge=0)
    database_pool_max_size: int = Field(default=5, ge=1)

    @property
    def dsn(self) -> Optional[str]:
        return self.database_url_direct or self.database_url

    @property
    def is_configured(self) -> bool:
        """Check if Postgres is configured."""
        return bool(self.dsn)


# =============================================================================
# Auth Settings (Firebase ID tokens)
# =============================================================================


class AuthSettings(BaseSettings):
    """Configuration for Firebase ID token verification."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    firebase_project_id: Optional[str] = Field(
        default=None,
        description="Firebase project ID (token audience)",
    )
    firebase_jwks_url: str = Field(
        default=(
            "https://www.googleapis.com/service_accounts/v1/jwk/"
            "securetoken@system.gserviceaccount.com"
        ),
        description="JWKS endpoint for Firebase ID token signing keys",
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.firebase_project_id)


# =============================================================================
# Security Settings
# =============================================================================


class SecuritySettings(BaseSettings):
    """Configuration for security features."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    dev_mode: bool = Field(
        default=False,
        description="Enable development mode (bearer token is taken as the uid)",
    )
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def origins_list(self) -> List[str]:
        """Get parsed list of allowed origins."""
        return [
            origin.strip()
            for origin in self.allowed_origins.split(",")
            if origin.strip()
        ]


# =============================================================================
# Logging Settings
# =============================================================================


class LoggingSettings(BaseSettings):
    """Configuration for logging."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format_json: bool = Field(
        default=False,
        description="Force JSON log format in development",
    )
    request_logging_enabled: bool = Field(
        default=True,
        description="Enable request logging middleware",
    )


# =============================================================================
# Monitoring Settings (Sentry)
# =============================================================================


class SentrySettings(BaseSettings):
    """Configuration for Sentry error tracking."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking",
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment name",
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry transaction sample rate (0.0 to 1.0)",
    )
    sentry_release: Optional[str] = Field(
        default="linkranger-usage@1.0.0",
        description="Sentry release version",
    )
    server_name: str = Field(
        default="linkranger-usage-api",
        description="Server name for Sentry",
    )

    @property
    def is_configured(self) -> bool:
        """Check if Sentry is configured."""
        return bool(self.sentry_dsn)


# =============================================================================
# Main Settings Class
# =============================================================================


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration groups.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    usage: UsageSettings = Field(default_factory=UsageSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    @property
    def storage_backend(self) -> Literal["postgres", "memory"]:
        """Which ledger/plan-state backend the service will use."""
        return "postgres" if self.database.is_configured else "memory"

    @property
    def is_sentry_configured(self) -> bool:
        return self.sentry.is_configured

    @property
    def is_production(self) -> bool:
        return self.security.is_production

    @property
    def is_dev_mode(self) -> bool:
        return self.security.dev_mode

    def get_config_summary(self) -> dict:
        """
        Get a summary of configuration status for logging.

        This method returns a dictionary with configuration status
        WITHOUT exposing any secrets.
        """
        return {
            "environment": self.security.environment,
            "dev_mode": self.is_dev_mode,
            "storage_backend": self.storage_backend,
            "llm_configured": self.llm.is_configured,
            "llm_model": self.llm.openai_model,
            "firebase_auth_configured": self.auth.is_configured,
            "sentry_configured": self.is_sentry_configured,
            "test_accounts": len(self.usage.test_account_plans),
            "stats_cache_ttl": self.usage.usage_stats_cache_ttl_seconds,
            "allowed_origins": self.security.origins_list,
            "log_level": self.logging.log_level,
        }


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Call get_settings.cache_clear() (or reload_settings()) to reload.

    Raises:
        ValidationError: If required configuration is missing or invalid
    """
    return Settings()


def reload_settings() -> Settings:
    """Clear the cache and return settings freshly read from the environment."""
    get_settings.cache_clear()
    return get_settings()

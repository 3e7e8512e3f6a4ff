"""
Controller configuration using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import Optional
from pydantic import Field, field_validator, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main controller settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="dbclaim-controller", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment (development/staging/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    # Database server (admin credentials used to provision tenants)
    db_admin_user: str = Field(default="postgres", description="Admin user on target database servers")
    db_admin_password: str = Field(default="", description="Admin password on target database servers")
    db_default_sslmode: str = Field(default="require", description="Default libpq sslmode for claims that omit one")
    db_timeout_seconds: int = Field(
        default=10, ge=1, le=300, description="Deadline for each blocking database call (connect and statement)"
    )

    # Reconciler
    reconcile_workers: int = Field(default=4, ge=1, le=64, description="Number of concurrent reconcile workers")
    backoff_initial_seconds: float = Field(default=1.0, gt=0, description="First requeue delay after a failure")
    backoff_max_seconds: float = Field(default=300.0, gt=0, description="Upper bound on requeue delay")
    resync_interval_seconds: int = Field(
        default=300, ge=0, description="Re-queue every claim this often to catch drift (0 disables)"
    )

    # Collaborators
    claims_manifest_path: Optional[str] = Field(
        default=None, description="YAML manifest of claims to reconcile at startup"
    )
    controller_config_path: Optional[str] = Field(
        default=None, description="YAML controller config holding passwordConfig"
    )
    kubeconfig_path: Optional[str] = Field(
        default=None, description="Path to kubeconfig file (None for in-cluster)"
    )

    # Leader election
    redis_url: Optional[RedisDsn] = Field(default=None, description="Redis URL; enables leader election when set")
    redis_max_connections: int = Field(default=10, ge=1, le=100, description="Redis max connections")
    leader_lease_seconds: int = Field(default=30, ge=5, le=300, description="Leader lease duration")

    # Monitoring
    metrics_enabled: bool = Field(default=True, description="Expose Prometheus metrics")
    metrics_port: int = Field(default=8080, ge=1, le=65535, description="Prometheus metrics port")

    # Sentry
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    sentry_traces_sample_rate: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Sentry traces sample rate"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = ["development", "staging", "production", "testing"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


# Global settings instance
settings = Settings()

"""
Pydantic models for database claims, their status and credentials.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DatabaseEngine(str, Enum):
    """Supported database engines."""

    POSTGRES = "postgres"


class PasswordComplexity(str, Enum):
    """Password complexity switch."""

    ENABLED = "enabled"
    DISABLED = "disabled"


class ClaimPhase(str, Enum):
    """Claim lifecycle phase."""

    PENDING = "pending"
    PROVISIONING = "provisioning"
    READY = "ready"
    FAILED = "failed"


class ProvisioningAction(str, Enum):
    """Discrete, idempotent mutation applied to a database server."""

    CREATE_DATABASE = "create_database"
    CREATE_GROUP = "create_group"
    CREATE_USER = "create_user"
    ROTATE_USER = "rotate_user"
    UPDATE_PASSWORD = "update_password"
    DONE = "done"


class PasswordConfig(BaseModel):
    """
    Password policy.

    Mirrors the ``passwordConfig`` block of the controller config. Length and
    rotation period are string-encoded integers there; they are kept as raw
    values here so that a malformed policy surfaces as a policy violation at
    generation time instead of failing claim parsing.
    """

    model_config = ConfigDict(populate_by_name=True)

    password_complexity: PasswordComplexity = Field(
        default=PasswordComplexity.ENABLED, alias="passwordComplexity"
    )
    min_password_length: Optional[str] = Field(default="15", alias="minPasswordLength")
    password_rotation_period: Optional[str] = Field(default="60", alias="passwordRotationPeriod")

    @field_validator("min_password_length", "password_rotation_period", mode="before")
    @classmethod
    def coerce_to_string(cls, v):
        """Accept YAML integers as well as quoted strings."""
        if v is None:
            return v
        return str(v).strip()

    @property
    def complexity_enabled(self) -> bool:
        return self.password_complexity == PasswordComplexity.ENABLED

    @property
    def rotation_period_days(self) -> Optional[int]:
        """Rotation period in days, or None when unset or not a positive integer."""
        try:
            days = int(self.password_rotation_period)
        except (TypeError, ValueError):
            return None
        return days if days > 0 else None


class ClaimSpec(BaseModel):
    """Desired state of a tenant database."""

    model_config = ConfigDict(populate_by_name=True)

    engine: DatabaseEngine = Field(default=DatabaseEngine.POSTGRES, alias="type")
    host: str
    port: int = Field(default=5432, ge=1, le=65535)
    sslmode: Optional[str] = None
    database_name: str = Field(..., min_length=1, max_length=63, alias="databaseName")
    username: str = Field(..., min_length=1, max_length=63)
    role: str = Field(..., min_length=1, max_length=63)
    secret_name: Optional[str] = Field(default=None, alias="secretName")
    password_config: Optional[PasswordConfig] = Field(default=None, alias="passwordConfig")


class ClaimStatus(BaseModel):
    """Observed status written back by the reconciliation controller."""

    phase: ClaimPhase = ClaimPhase.PENDING
    last_action: Optional[ProvisioningAction] = None
    last_error: Optional[str] = None
    error_category: Optional[str] = None
    credential_version: int = 0
    active_username: Optional[str] = None
    password_updated_at: Optional[datetime] = None
    consecutive_failures: int = 0
    observed_generation: int = 0
    updated_at: Optional[datetime] = None

    @field_validator("password_updated_at", "updated_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Timestamps without an offset are taken as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class DatabaseClaim(BaseModel):
    """
    Declarative request for a tenant database.

    Created and deleted by an external actor; only ``status`` is mutated
    by the controller.
    """

    namespace: str = "default"
    name: str
    generation: int = 1
    spec: ClaimSpec
    status: ClaimStatus = Field(default_factory=ClaimStatus)

    @property
    def key(self) -> str:
        """Stable identity used for queueing and status write-back."""
        return f"{self.namespace}/{self.name}"

    @property
    def active_username(self) -> str:
        """Username currently holding the active credential."""
        return self.status.active_username or self.spec.username


class Credential(BaseModel):
    """Active login for a claim."""

    username: str
    password: str = Field(..., repr=False)
    role: str

from dbclaim.models.claim import (
    ClaimPhase,
    ClaimSpec,
    ClaimStatus,
    Credential,
    DatabaseClaim,
    DatabaseEngine,
    PasswordComplexity,
    PasswordConfig,
    ProvisioningAction,
)

__all__ = [
    "ClaimPhase",
    "ClaimSpec",
    "ClaimStatus",
    "Credential",
    "DatabaseClaim",
    "DatabaseEngine",
    "PasswordComplexity",
    "PasswordConfig",
    "ProvisioningAction",
]

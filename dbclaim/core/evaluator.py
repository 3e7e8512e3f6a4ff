"""
Claim state evaluator.

Computes the next provisioning action for a claim from its desired spec and
the state observed on the server. ``next_action`` is a pure function, so
recovering from a crash at any point is simply re-evaluating.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from dbclaim.dbclient.base import DBClient
from dbclaim.models.claim import DatabaseClaim, PasswordConfig, ProvisioningAction


@dataclass(frozen=True)
class ObservedState:
    """What the provisioning client sees on the server for one claim."""

    database_exists: bool = False
    group_ready: bool = False
    active_user_exists: bool = False
    desired_user_exists: bool = False


def observe(client: DBClient, claim: DatabaseClaim) -> ObservedState:
    """
    Query the server for the claim's database, role and users.

    Stops at the first missing prerequisite; later fields stay False and are
    not consulted by next_action in that case.
    """
    spec = claim.spec
    if not client.database_exists(spec.database_name):
        return ObservedState()

    if not client.group_ready(spec.database_name, spec.role):
        return ObservedState(database_exists=True)

    active = claim.active_username
    active_exists = client.user_exists(active)
    if active == spec.username:
        desired_exists = active_exists
    else:
        desired_exists = client.user_exists(spec.username)

    return ObservedState(
        database_exists=True,
        group_ready=True,
        active_user_exists=active_exists,
        desired_user_exists=desired_exists,
    )


def rotation_period(claim: DatabaseClaim, default_policy: PasswordConfig) -> Optional[timedelta]:
    """Rotation period from the claim's policy, falling back to the controller default."""
    policy = claim.spec.password_config or default_policy
    days = policy.rotation_period_days
    return timedelta(days=days) if days else None


def next_rotation_at(claim: DatabaseClaim, default_policy: PasswordConfig) -> Optional[datetime]:
    """When the active password falls due for rotation, if it is known."""
    period = rotation_period(claim, default_policy)
    updated_at = claim.status.password_updated_at
    if period is None or updated_at is None:
        return None
    return updated_at + period


def next_action(
    claim: DatabaseClaim,
    observed: ObservedState,
    default_policy: PasswordConfig,
    now: Optional[datetime] = None,
) -> ProvisioningAction:
    """
    Decide the next action; first unmet condition wins.

    1. database missing        -> CREATE_DATABASE
    2. role missing            -> CREATE_GROUP
    3. no user at all          -> CREATE_USER
    4. username change pending -> ROTATE_USER
    5. password unknown or due -> UPDATE_PASSWORD
    6. otherwise               -> DONE
    """
    now = now or datetime.now(timezone.utc)

    if not observed.database_exists:
        return ProvisioningAction.CREATE_DATABASE

    if not observed.group_ready:
        return ProvisioningAction.CREATE_GROUP

    if not (observed.active_user_exists or observed.desired_user_exists):
        return ProvisioningAction.CREATE_USER

    if claim.active_username != claim.spec.username:
        return ProvisioningAction.ROTATE_USER

    # No recorded password means the secret was never persisted; mint a new one
    if claim.status.password_updated_at is None:
        return ProvisioningAction.UPDATE_PASSWORD

    due_at = next_rotation_at(claim, default_policy)
    if due_at is not None and now >= due_at:
        return ProvisioningAction.UPDATE_PASSWORD

    return ProvisioningAction.DONE

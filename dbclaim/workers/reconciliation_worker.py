"""
Reconciliation controller for database claims.

Each pass evaluates one claim against the live server, executes at most one
provisioning action, writes status back and tells the caller when to look at
the claim again:

- converged: mark READY, requeue at the next rotation deadline
- action applied: requeue immediately for the next action in sequence
- retryable failure: back to PENDING (a ready claim that failed before
  evaluation stays READY), requeue with exponential backoff
- terminal failure: mark FAILED, no requeue until the claim spec changes

Provisioning client calls are blocking; they run on a worker thread so the
event loop keeps serving other claims.
"""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

from dbclaim.config.logging import get_logger
from dbclaim.config.settings import settings
from dbclaim.core.evaluator import next_action, next_rotation_at, observe
from dbclaim.core.password import generate_password
from dbclaim.core.state_machine import ClaimStateMachine
from dbclaim.dbclient import client_factory
from dbclaim.dbclient.base import DBClient
from dbclaim.models.claim import (
    ClaimPhase,
    ClaimStatus,
    Credential,
    DatabaseClaim,
    PasswordConfig,
    ProvisioningAction,
)
from dbclaim.services.claim_store import StatusReporter
from dbclaim.services.metrics import ProvisioningMetrics
from dbclaim.services.secret_store import SecretStore
from dbclaim.utils.retry import backoff_delay, error_category, is_retryable_error

logger = get_logger(__name__)

ClientFactory = Callable[[DatabaseClaim], DBClient]


def default_client_factory(metrics: ProvisioningMetrics) -> ClientFactory:
    """Client factory connecting with the admin credentials from settings."""

    def build(claim: DatabaseClaim) -> DBClient:
        spec = claim.spec
        return client_factory(
            spec.engine.value,
            spec.host,
            spec.port,
            settings.db_admin_user,
            settings.db_admin_password,
            metrics,
            sslmode=spec.sslmode or settings.db_default_sslmode,
            timeout=settings.db_timeout_seconds,
        )

    return build


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one pass. requeue_after is in seconds; 0 means immediately."""

    requeue: bool = False
    requeue_after: Optional[float] = None
    action: Optional[ProvisioningAction] = None
    phase: Optional[ClaimPhase] = None


class ReconciliationController:
    """
    Drives claims towards their desired state, one action per pass.

    Stateless between passes: everything needed to resume lives in claim
    status or on the database server.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        secret_store: SecretStore,
        status_reporter: StatusReporter,
        metrics: ProvisioningMetrics,
        password_config: Optional[PasswordConfig] = None,
        backoff_initial: float = 1.0,
        backoff_max: float = 300.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client_factory = client_factory
        self.secret_store = secret_store
        self.status_reporter = status_reporter
        self.metrics = metrics
        self.password_config = password_config or PasswordConfig()
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.clock = clock

    def policy_for(self, claim: DatabaseClaim) -> PasswordConfig:
        return claim.spec.password_config or self.password_config

    @asynccontextmanager
    async def _connection(self, claim: DatabaseClaim) -> AsyncIterator[DBClient]:
        client = self.client_factory(claim)
        await asyncio.to_thread(client.connect)
        try:
            yield client
        finally:
            await asyncio.to_thread(client.close)

    def _set_phase(self, claim: DatabaseClaim, status: ClaimStatus, phase: ClaimPhase) -> None:
        for step in ClaimStateMachine.path_to(status.phase, phase):
            ClaimStateMachine.validate_transition(status.phase, step, claim.key)
            logger.info("claim_phase_changed", claim=claim.key, from_phase=status.phase.value, to_phase=step.value)
            status.phase = step

    async def _report(self, claim: DatabaseClaim, status: ClaimStatus) -> None:
        status.updated_at = self.clock()
        await self.status_reporter.report_status(claim.key, status)

    async def _execute(
        self, client: DBClient, claim: DatabaseClaim, action: ProvisioningAction
    ) -> Optional[Credential]:
        """Run one action; returns the credential it made active, if any."""
        spec = claim.spec

        if action == ProvisioningAction.CREATE_DATABASE:
            await asyncio.to_thread(client.create_database, spec.database_name)
            return None

        if action == ProvisioningAction.CREATE_GROUP:
            await asyncio.to_thread(client.create_group, spec.database_name, spec.role)
            return None

        password = generate_password(self.policy_for(claim))

        if action == ProvisioningAction.CREATE_USER:
            applied = await asyncio.to_thread(client.create_user, spec.username, spec.role, password)
        elif action == ProvisioningAction.ROTATE_USER:
            applied = await asyncio.to_thread(
                client.update_user, claim.active_username, spec.username, spec.role, password
            )
        elif action == ProvisioningAction.UPDATE_PASSWORD:
            applied = await asyncio.to_thread(client.update_password, spec.username, password)
        else:
            raise ValueError(f"Unsupported provisioning action {action.value}")

        # Nothing changed on the server, so the minted password is not live
        if not applied:
            return None
        return Credential(username=spec.username, password=password, role=spec.role)

    async def reconcile(self, claim: DatabaseClaim) -> ReconcileResult:
        """Run one reconciliation pass for claim."""
        log = logger.bind(claim=claim.key, generation=claim.generation)
        status = claim.status.model_copy()

        if status.phase == ClaimPhase.FAILED:
            if status.observed_generation == claim.generation:
                log.debug("claim_failed_awaiting_spec_change", last_error=status.last_error)
                return ReconcileResult(phase=status.phase)
            self._set_phase(claim, status, ClaimPhase.PENDING)
            status.consecutive_failures = 0
        status.observed_generation = claim.generation

        action: Optional[ProvisioningAction] = None
        credential: Optional[Credential] = None
        try:
            async with self._connection(claim) as client:
                observed = await asyncio.to_thread(observe, client, claim)
                action = next_action(claim, observed, self.password_config, self.clock())
                log = log.bind(action=action.value)

                if action != ProvisioningAction.DONE:
                    self._set_phase(claim, status, ClaimPhase.PROVISIONING)
                    log.info("provisioning_action_started")
                    credential = await self._execute(client, claim, action)

            # The claim only becomes ready once its credential is persisted
            if credential is not None:
                await self.secret_store.write(claim, credential)
        except Exception as e:
            return await self._handle_failure(claim, status, action, e, log)

        if action == ProvisioningAction.DONE:
            return await self._converged(claim, status, log)
        return await self._applied(claim, status, action, credential, log)

    async def _converged(self, claim: DatabaseClaim, status: ClaimStatus, log) -> ReconcileResult:
        self._set_phase(claim, status, ClaimPhase.READY)
        status.last_action = ProvisioningAction.DONE
        status.last_error = None
        status.error_category = None
        status.consecutive_failures = 0
        status.active_username = claim.active_username
        await self._report(claim, status)
        self.metrics.record_reconcile("success", ProvisioningAction.DONE.value)

        due_at = next_rotation_at(claim.model_copy(update={"status": status}), self.policy_for(claim))
        if due_at is None:
            log.info("claim_ready")
            return ReconcileResult(action=ProvisioningAction.DONE, phase=status.phase)

        delay = max((due_at - self.clock()).total_seconds(), 0.0)
        log.info("claim_ready", next_rotation_at=due_at.isoformat())
        return ReconcileResult(
            requeue=True, requeue_after=delay, action=ProvisioningAction.DONE, phase=status.phase
        )

    async def _applied(
        self,
        claim: DatabaseClaim,
        status: ClaimStatus,
        action: ProvisioningAction,
        credential: Optional[Credential],
        log,
    ) -> ReconcileResult:
        status.last_action = action
        status.last_error = None
        status.error_category = None
        status.consecutive_failures = 0
        if credential is not None:
            status.credential_version += 1
            status.active_username = credential.username
            status.password_updated_at = self.clock()
        await self._report(claim, status)
        self.metrics.record_reconcile("success", action.value)

        log.info(
            "provisioning_action_applied",
            credential_version=status.credential_version,
            credential_rotated=credential is not None,
        )
        return ReconcileResult(requeue=True, requeue_after=0.0, action=action, phase=status.phase)

    async def _handle_failure(
        self,
        claim: DatabaseClaim,
        status: ClaimStatus,
        action: Optional[ProvisioningAction],
        exc: Exception,
        log,
    ) -> ReconcileResult:
        category = error_category(exc)
        status.last_action = action
        status.last_error = str(exc)
        status.error_category = category
        action_label = action.value if action else "none"

        if not is_retryable_error(exc):
            self._set_phase(claim, status, ClaimPhase.FAILED)
            log.error("reconcile_failed_terminal", error=str(exc), category=category)
            await self._report(claim, status)
            self.metrics.record_reconcile("failed", action_label)
            return ReconcileResult(action=action, phase=status.phase)

        status.consecutive_failures += 1
        delay = backoff_delay(
            status.consecutive_failures,
            initial_delay=self.backoff_initial,
            max_delay=self.backoff_max,
        )
        # Only an evaluated action moves a ready claim out of READY
        if not (action in (None, ProvisioningAction.DONE) and status.phase == ClaimPhase.READY):
            self._set_phase(claim, status, ClaimPhase.PENDING)
        log.warning(
            "reconcile_failed_requeue",
            error=str(exc),
            error_type=type(exc).__name__,
            category=category,
            consecutive_failures=status.consecutive_failures,
            requeue_after_seconds=delay,
            exc_info=category == "internal error",
        )
        await self._report(claim, status)
        self.metrics.record_reconcile("error", action_label)
        return ReconcileResult(requeue=True, requeue_after=delay, action=action, phase=status.phase)

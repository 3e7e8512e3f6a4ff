"""
Controller entry point.

Starts in ONE process:
1. Prometheus metrics endpoint
2. Claim manager (reconcile workers), behind Redis leader election when
   ``REDIS_URL`` is set

Run with ``python -m dbclaim.main``.
"""
import asyncio
import signal
import socket
import sys
import uuid

import sentry_sdk
from prometheus_client import start_http_server

from dbclaim.config.controller_config import load_controller_config
from dbclaim.config.logging import configure_logging, get_logger
from dbclaim.config.redis import RedisConnection
from dbclaim.config.settings import settings
from dbclaim.services.claim_store import InMemoryClaimStore, load_claim_manifest
from dbclaim.services.metrics import ProvisioningMetrics
from dbclaim.services.secret_store import KubernetesSecretStore
from dbclaim.workers.leader_election import LeaderElection
from dbclaim.workers.manager import ClaimManager
from dbclaim.workers.reconciliation_worker import (
    ReconciliationController,
    default_client_factory,
)

configure_logging()
logger = get_logger(__name__)

# Initialize Sentry for error tracking (production)
if settings.sentry_dsn and settings.is_production:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        environment=settings.environment,
        release=settings.app_version,
    )


async def run_with_leader_election(manager: ClaimManager) -> None:
    """Run the manager only while holding leadership; stop when it is lost."""
    await RedisConnection.connect()

    instance_id = f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"
    election = LeaderElection(instance_id=instance_id, lease_duration=settings.leader_lease_seconds)
    renew_interval = max(settings.leader_lease_seconds / 3, 1)

    try:
        while not await election.acquire_leadership():
            if manager.queue.shutting_down:
                return
            await asyncio.sleep(renew_interval)

        logger.info("became_leader_starting_manager", instance_id=instance_id)
        manager_task = asyncio.create_task(manager.start())
        while not manager_task.done():
            await asyncio.wait({manager_task}, timeout=renew_interval)
            if manager_task.done():
                break
            if not await election.renew_lease():
                # Another replica owns the claims now; exit and let the orchestrator restart us
                logger.error("lost_leadership_stopping_manager", instance_id=instance_id)
                await manager.stop()
        await manager_task
    finally:
        await election.release_leadership()


async def run() -> None:
    """Wire collaborators and run until SIGTERM/SIGINT."""
    logger.info(
        "controller_starting",
        version=settings.app_version,
        environment=settings.environment,
    )

    metrics = ProvisioningMetrics()
    if settings.metrics_enabled:
        start_http_server(settings.metrics_port)
        logger.info("metrics_server_started", port=settings.metrics_port)

    password_config = load_controller_config(settings.controller_config_path)

    store = InMemoryClaimStore()
    if settings.claims_manifest_path:
        load_claim_manifest(settings.claims_manifest_path, store)

    secret_store = await KubernetesSecretStore.from_kubeconfig(
        settings.kubeconfig_path, default_sslmode=settings.db_default_sslmode
    )

    controller = ReconciliationController(
        client_factory=default_client_factory(metrics),
        secret_store=secret_store,
        status_reporter=store,
        metrics=metrics,
        password_config=password_config,
        backoff_initial=settings.backoff_initial_seconds,
        backoff_max=settings.backoff_max_seconds,
    )
    manager = ClaimManager(
        controller,
        store,
        workers=settings.reconcile_workers,
        backoff_initial=settings.backoff_initial_seconds,
        backoff_max=settings.backoff_max_seconds,
        resync_interval=settings.resync_interval_seconds or None,
    )

    loop = asyncio.get_running_loop()

    def signal_handler(sig_name: str):
        logger.info("signal_received", signal=sig_name)
        asyncio.create_task(manager.stop())

    loop.add_signal_handler(signal.SIGTERM, lambda: signal_handler("SIGTERM"))
    loop.add_signal_handler(signal.SIGINT, lambda: signal_handler("SIGINT"))

    try:
        if settings.redis_url:
            await run_with_leader_election(manager)
        else:
            await manager.start()
    finally:
        await secret_store.close()
        await RedisConnection.close()
        logger.info("controller_stopped")


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("controller_interrupted")
        sys.exit(0)


if __name__ == "__main__":
    main()

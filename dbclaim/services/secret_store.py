"""
Credential persistence.

The controller hands every minted credential to a ``SecretStore`` and does
not retry the call itself; retrying persistence belongs to the store.
``KubernetesSecretStore`` writes an Opaque Secret in the claim's namespace.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client.rest import ApiException
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from dbclaim.config.logging import get_logger
from dbclaim.dbclient.dsn import postgres_connection_string, postgres_uri
from dbclaim.exceptions import SecretStoreError
from dbclaim.models.claim import Credential, DatabaseClaim
from dbclaim.utils.retry import is_retryable_k8s_error

logger = get_logger(__name__)

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
CLAIM_LABEL = "dbclaim.io/claim"


class SecretStore(ABC):
    """Persists the active credential of a claim."""

    @abstractmethod
    async def write(self, claim: DatabaseClaim, credential: Credential) -> None:
        """Persist credential. Raises SecretStoreError on failure."""


def secret_name_for(claim: DatabaseClaim) -> str:
    return claim.spec.secret_name or f"{claim.name}-db-credentials"


def secret_data(claim: DatabaseClaim, credential: Credential, default_sslmode: str) -> Dict[str, str]:
    """Key/value payload stored for a claim's credential."""
    spec = claim.spec
    sslmode = spec.sslmode or default_sslmode
    return {
        "username": credential.username,
        "password": credential.password,
        "role": credential.role,
        "database": spec.database_name,
        "host": spec.host,
        "port": str(spec.port),
        "sslmode": sslmode,
        "dsn.txt": postgres_connection_string(
            spec.host, spec.port, credential.username, credential.password, spec.database_name, sslmode
        ),
        "uri_dsn.txt": postgres_uri(
            spec.host, spec.port, credential.username, credential.password, spec.database_name, sslmode
        ),
    }


class KubernetesSecretStore(SecretStore):
    """Writes credentials to Kubernetes Secrets, retrying transient API errors."""

    def __init__(
        self,
        core_api: client.CoreV1Api,
        api_client: Optional[client.ApiClient] = None,
        default_sslmode: str = "require",
        max_attempts: int = 3,
        retry_multiplier: float = 1.0,
    ):
        self.core_api = core_api
        self.api_client = api_client
        self.default_sslmode = default_sslmode
        self.max_attempts = max_attempts
        self.retry_multiplier = retry_multiplier

    @classmethod
    async def from_kubeconfig(
        cls, kubeconfig_path: Optional[str] = None, default_sslmode: str = "require"
    ) -> "KubernetesSecretStore":
        """Build a store from a kubeconfig file, or in-cluster config when no path is given."""
        if kubeconfig_path:
            await config.load_kube_config(config_file=kubeconfig_path)
        else:
            config.load_incluster_config()
        api_client = client.ApiClient()
        return cls(client.CoreV1Api(api_client), api_client, default_sslmode=default_sslmode)

    async def close(self):
        """Close the underlying API client."""
        if self.api_client:
            await self.api_client.close()

    async def _upsert(self, name: str, namespace: str, body: client.V1Secret) -> None:
        try:
            await self.core_api.replace_namespaced_secret(name=name, namespace=namespace, body=body)
        except ApiException as e:
            if e.status != 404:
                raise
            await self.core_api.create_namespaced_secret(namespace=namespace, body=body)
            logger.info("credential_secret_created", secret=name, namespace=namespace)

    async def write(self, claim: DatabaseClaim, credential: Credential) -> None:
        name = secret_name_for(claim)
        body = client.V1Secret(
            api_version="v1",
            kind="Secret",
            type="Opaque",
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=claim.namespace,
                labels={MANAGED_BY_LABEL: "dbclaim-controller", CLAIM_LABEL: claim.name},
            ),
            string_data=secret_data(claim, credential, self.default_sslmode),
        )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.retry_multiplier, max=10),
                retry=retry_if_exception(is_retryable_k8s_error),
                reraise=True,
            ):
                with attempt:
                    await self._upsert(name, claim.namespace, body)
        except (ApiException, ConnectionError, TimeoutError) as e:
            logger.error(
                "credential_secret_write_failed",
                claim=claim.key,
                secret=name,
                status_code=getattr(e, "status", None),
                error=str(e),
            )
            raise SecretStoreError(
                f"could not write secret {claim.namespace}/{name}",
                details={"status_code": getattr(e, "status", None)},
            )

        logger.info("credential_secret_written", claim=claim.key, secret=name, username=credential.username)

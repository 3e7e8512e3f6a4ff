"""
Claim source and status write-back.

The controller consumes claims through ``ClaimSource`` and writes status
through ``StatusReporter``. ``InMemoryClaimStore`` implements both and can be
seeded from a YAML manifest::

    claims:
      - name: tenant1
        namespace: team-a
        spec:
          type: postgres
          host: pg.internal
          port: 5432
          databaseName: tenant1
          username: app1
          role: app1_role
"""
import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from dbclaim.config.logging import get_logger
from dbclaim.exceptions import ConfigurationError
from dbclaim.models.claim import ClaimStatus, DatabaseClaim

logger = get_logger(__name__)


class ClaimSource(ABC):
    """Delivers claims and claim-changed notifications."""

    @abstractmethod
    async def get(self, key: str) -> Optional[DatabaseClaim]:
        """Current claim for key, or None if it has been deleted."""

    @abstractmethod
    def watch(self) -> AsyncIterator[str]:
        """Yield keys of claims that changed."""

    @abstractmethod
    async def list_keys(self) -> List[str]:
        """Keys of all current claims, used for periodic resync."""


class StatusReporter(ABC):
    """Receives claim status written back by the controller."""

    @abstractmethod
    async def report_status(self, key: str, status: ClaimStatus) -> None:
        ...


class InMemoryClaimStore(ClaimSource, StatusReporter):
    """Claims held in process memory."""

    def __init__(self):
        self._claims: Dict[str, DatabaseClaim] = {}
        self._changes: "asyncio.Queue[str]" = asyncio.Queue()

    def upsert(self, claim: DatabaseClaim) -> None:
        """Create or replace a claim, as an external actor would, and notify watchers."""
        existing = self._claims.get(claim.key)
        if existing is not None:
            claim = claim.model_copy(update={"status": existing.status})
        self._claims[claim.key] = claim
        self._changes.put_nowait(claim.key)
        logger.debug("claim_upserted", claim=claim.key, generation=claim.generation)

    def delete(self, key: str) -> None:
        if self._claims.pop(key, None) is not None:
            self._changes.put_nowait(key)
            logger.debug("claim_deleted", claim=key)

    async def list_keys(self) -> List[str]:
        return list(self._claims)

    async def get(self, key: str) -> Optional[DatabaseClaim]:
        claim = self._claims.get(key)
        return claim.model_copy(deep=True) if claim is not None else None

    async def watch(self) -> AsyncIterator[str]:
        while True:
            yield await self._changes.get()

    async def report_status(self, key: str, status: ClaimStatus) -> None:
        claim = self._claims.get(key)
        if claim is None:
            logger.warning("status_for_unknown_claim", claim=key)
            return
        self._claims[key] = claim.model_copy(update={"status": status.model_copy()})
        logger.debug(
            "claim_status_reported",
            claim=key,
            phase=status.phase.value,
            credential_version=status.credential_version,
            last_error=status.last_error,
        )


def parse_claim_manifest(content: Union[str, bytes]) -> List[DatabaseClaim]:
    """
    Parse a YAML claim manifest.

    Raises:
        ConfigurationError: If the manifest or any claim in it is malformed
    """
    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid claim manifest YAML: {e}")

    entries = data.get("claims") if isinstance(data, dict) else None
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ConfigurationError("'claims' must be a list")

    claims = []
    for index, entry in enumerate(entries):
        try:
            claims.append(DatabaseClaim.model_validate(entry))
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid claim at index {index}",
                details={"errors": e.errors(include_url=False)},
            )
    return claims


def load_claim_manifest(path: str, store: InMemoryClaimStore) -> int:
    """Load every claim in the manifest at path into store; returns the number loaded."""
    claims = parse_claim_manifest(Path(path).read_text())
    for claim in claims:
        store.upsert(claim)
    logger.info("claim_manifest_loaded", path=path, claim_count=len(claims))
    return len(claims)

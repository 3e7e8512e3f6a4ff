"""
Tests for the in-memory claim store and claim manifests.
"""
import asyncio

import pytest

from conftest import build_claim
from dbclaim.exceptions import ConfigurationError
from dbclaim.models.claim import ClaimPhase, ClaimStatus, DatabaseEngine
from dbclaim.services.claim_store import InMemoryClaimStore, load_claim_manifest, parse_claim_manifest

MANIFEST = """
claims:
  - name: tenant1
    namespace: team-a
    spec:
      type: postgres
      host: pg.internal
      databaseName: tenant1
      username: app1
      role: app1_role
      passwordConfig:
        passwordComplexity: enabled
        minPasswordLength: 20
  - name: tenant2
    spec:
      host: pg.internal
      port: 6432
      databaseName: tenant2
      username: app2
      role: app2_role
"""


def test_parse_claim_manifest():
    first, second = parse_claim_manifest(MANIFEST)

    assert first.key == "team-a/tenant1"
    assert first.spec.engine == DatabaseEngine.POSTGRES
    assert first.spec.port == 5432
    assert first.spec.password_config.min_password_length == "20"
    assert first.status.phase == ClaimPhase.PENDING

    assert second.key == "default/tenant2"
    assert second.spec.port == 6432
    assert second.spec.password_config is None


def test_empty_manifest():
    assert parse_claim_manifest("") == []
    assert parse_claim_manifest("other: 1") == []


@pytest.mark.parametrize(
    "content",
    [
        "claims: {name: tenant1}",
        "claims:\n  - name: tenant1\n    spec: {host: pg.internal}",
        "claims: [unclosed",
    ],
)
def test_invalid_manifest(content):
    with pytest.raises(ConfigurationError):
        parse_claim_manifest(content)


def test_load_claim_manifest(tmp_path):
    path = tmp_path / "claims.yaml"
    path.write_text(MANIFEST)
    store = InMemoryClaimStore()

    assert load_claim_manifest(str(path), store) == 2


@pytest.mark.asyncio
async def test_upsert_preserves_status():
    store = InMemoryClaimStore()
    store.upsert(build_claim())
    await store.report_status("team-a/tenant1", ClaimStatus(phase=ClaimPhase.READY, credential_version=3))

    store.upsert(build_claim(username="app2", generation=2))

    claim = await store.get("team-a/tenant1")
    assert claim.spec.username == "app2"
    assert claim.generation == 2
    assert claim.status.phase == ClaimPhase.READY
    assert claim.status.credential_version == 3


@pytest.mark.asyncio
async def test_get_returns_copy():
    store = InMemoryClaimStore()
    store.upsert(build_claim())

    claim = await store.get("team-a/tenant1")
    claim.status.phase = ClaimPhase.FAILED

    assert (await store.get("team-a/tenant1")).status.phase == ClaimPhase.PENDING


@pytest.mark.asyncio
async def test_delete_and_list_keys():
    store = InMemoryClaimStore()
    store.upsert(build_claim(name="tenant1"))
    store.upsert(build_claim(name="tenant2"))

    store.delete("team-a/tenant1")

    assert await store.list_keys() == ["team-a/tenant2"]
    assert await store.get("team-a/tenant1") is None


@pytest.mark.asyncio
async def test_report_status_for_unknown_claim_is_ignored():
    store = InMemoryClaimStore()
    await store.report_status("team-a/missing", ClaimStatus())
    assert await store.list_keys() == []


@pytest.mark.asyncio
async def test_watch_yields_changed_keys():
    store = InMemoryClaimStore()
    store.upsert(build_claim(name="tenant1"))
    store.upsert(build_claim(name="tenant2"))
    store.delete("team-a/tenant1")

    watch = store.watch()
    keys = [await asyncio.wait_for(watch.__anext__(), 1.0) for _ in range(3)]
    await watch.aclose()

    assert keys == ["team-a/tenant1", "team-a/tenant2", "team-a/tenant1"]

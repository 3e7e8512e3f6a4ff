"""
Tests for Redis leader election.
"""
import pytest

from dbclaim.workers.leader_election import LeaderElection


class StubRedis:
    """Implements the handful of Redis commands leader election uses."""

    def __init__(self):
        self.data = {}
        self.ttl = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttl[key] = ex
        return True

    async def get(self, key):
        return self.data.get(key)

    async def expire(self, key, seconds):
        self.ttl[key] = seconds
        return True

    async def delete(self, key):
        self.data.pop(key, None)
        self.ttl.pop(key, None)
        return 1


@pytest.fixture
def redis():
    return StubRedis()


@pytest.mark.asyncio
async def test_only_one_instance_leads(redis):
    first = LeaderElection("a", lease_duration=30, redis_client=redis)
    second = LeaderElection("b", lease_duration=30, redis_client=redis)

    assert await first.acquire_leadership()
    assert not await second.acquire_leadership()
    assert redis.ttl[first.leader_key] == 30
    # Re-acquiring an owned lease succeeds
    assert await first.acquire_leadership()


@pytest.mark.asyncio
async def test_renew_lease(redis):
    election = LeaderElection("a", lease_duration=15, redis_client=redis)
    assert not await election.renew_lease()

    await election.acquire_leadership()
    redis.ttl[election.leader_key] = 1
    assert await election.renew_lease()
    assert redis.ttl[election.leader_key] == 15


@pytest.mark.asyncio
async def test_lease_taken_over(redis):
    election = LeaderElection("a", redis_client=redis)
    await election.acquire_leadership()

    redis.data[election.leader_key] = "b"

    assert not await election.renew_lease()
    assert not election.is_leader


@pytest.mark.asyncio
async def test_release_hands_over_leadership(redis):
    first = LeaderElection("a", redis_client=redis)
    second = LeaderElection("b", redis_client=redis)
    await first.acquire_leadership()

    await first.release_leadership()

    assert not first.is_leader
    assert await second.acquire_leadership()


@pytest.mark.asyncio
async def test_release_does_not_delete_foreign_lease(redis):
    election = LeaderElection("a", redis_client=redis)
    await election.acquire_leadership()
    redis.data[election.leader_key] = "b"

    await election.release_leadership()

    assert redis.data[election.leader_key] == "b"

"""
Leader election using Redis for the claim manager.
Ensures only ONE controller replica reconciles claims at a time.
"""
from typing import Optional

import redis.asyncio as aioredis

from dbclaim.config.redis import RedisConnection
from dbclaim.config.logging import get_logger

logger = get_logger(__name__)


class LeaderElection:
    """
    Simple leader election using Redis SET with NX and EX.

    Ensures only ONE replica drains the claim work queue even with
    multiple controller replicas.
    """

    def __init__(
        self,
        instance_id: str,
        lease_duration: int = 30,
        redis_client: Optional[aioredis.Redis] = None,
        leader_key: str = "dbclaim:leader:controller",
    ):
        """
        Initialize leader election.

        Args:
            instance_id: Unique instance identifier
            lease_duration: Lease duration in seconds
            redis_client: Optional Redis client; defaults to the shared connection
            leader_key: Redis key holding the current leader's instance id
        """
        self.instance_id = instance_id
        self.lease_duration = lease_duration
        self.leader_key = leader_key
        self.is_leader = False
        self._redis = redis_client

    async def _client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = await RedisConnection.get_client()
        return self._redis

    async def acquire_leadership(self) -> bool:
        """Try to acquire leadership."""
        redis = await self._client()

        acquired = await redis.set(
            self.leader_key,
            self.instance_id,
            nx=True,
            ex=self.lease_duration,
        )

        if acquired:
            if not self.is_leader:
                logger.info("leadership_acquired", instance_id=self.instance_id)
            self.is_leader = True
            return True

        # Check if we're already the leader
        current_leader = await redis.get(self.leader_key)

        if current_leader == self.instance_id:
            self.is_leader = True
            return True

        if self.is_leader:
            logger.info("leadership_lost", instance_id=self.instance_id, current_leader=current_leader)

        self.is_leader = False
        return False

    async def renew_lease(self) -> bool:
        """Renew leadership lease."""
        if not self.is_leader:
            return False

        redis = await self._client()
        current_leader = await redis.get(self.leader_key)

        if current_leader == self.instance_id:
            await redis.expire(self.leader_key, self.lease_duration)
            logger.debug("leadership_lease_renewed", instance_id=self.instance_id)
            return True

        logger.info("leadership_lost", instance_id=self.instance_id, current_leader=current_leader)
        self.is_leader = False
        return False

    async def release_leadership(self):
        """Release leadership (on shutdown)."""
        if not self.is_leader:
            return

        redis = await self._client()
        current_leader = await redis.get(self.leader_key)

        if current_leader == self.instance_id:
            await redis.delete(self.leader_key)
            logger.info("leadership_released", instance_id=self.instance_id)

        self.is_leader = False

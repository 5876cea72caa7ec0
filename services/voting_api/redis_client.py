"""Redis-backed per-network ballot rate limiter."""

import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class VoteRateLimiter:
    """
    Fixed-window counter of ballots cast from one network.

    ``reserve`` takes a slot with an atomic ``INCR`` before the ballot is
    committed; ``release`` hands it back when the ballot is rejected or
    never commits.
    """

    def __init__(self, client: redis.Redis, limit: int, window_seconds: int):
        self.client = client
        self.limit = limit
        self.window_seconds = window_seconds

    @classmethod
    def from_url(cls, url: str, limit: int, window_seconds: int) -> 'VoteRateLimiter':
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, limit, window_seconds)

    @staticmethod
    def _key(network: str) -> str:
        return f"vote_rate:{network}"

    async def reserve(self, network: str) -> bool:
        """
        Take one ballot slot for a network.

        Args:
            network: Hashed network signal

        Returns:
            True when the slot was taken; False, with nothing consumed, when
            the window is full
        """
        key = self._key(network)
        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, self.window_seconds)
            if count > self.limit:
                await self.client.decr(key)
                logger.info(f"Network {network} over its ballot limit ({self.limit})")
                return False
            logger.debug(f"Network {network} ballot count: {count}")
            return True
        except redis.RedisError as e:
            logger.error(f"Redis error reserving vote slot for {network}: {e}")
            raise

    async def release(self, network: str) -> None:
        """Give back a slot taken by ``reserve`` for a ballot that did not commit."""
        try:
            await self.client.decr(self._key(network))
        except redis.RedisError as e:
            logger.error(f"Redis error releasing vote slot for {network}: {e}")
            raise

    async def check_health(self) -> bool:
        try:
            return bool(await self.client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self):
        """Close Redis connection pool."""
        try:
            await self.client.aclose()
            logger.info("Redis connection pool closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")

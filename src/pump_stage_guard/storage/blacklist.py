"""Creator blacklist backed by a Redis set."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_BLACKLIST_KEY = "pump_stage_guard:creator_blacklist"


class BlacklistError(Exception):
    """Raised when the blacklist store cannot be read or written."""


def _normalize(address: str) -> str:
    return address.strip().lower()


class CreatorBlacklist:
    """Set of creator addresses that are rejected outright.

    Addresses are compared case-insensitively.
    """

    def __init__(self, redis: Redis, *, key: str = DEFAULT_BLACKLIST_KEY) -> None:
        self._redis = redis
        self._key = key

    async def is_blacklisted(self, creator: str) -> bool:
        try:
            return bool(await self._redis.sismember(self._key, _normalize(creator)))
        except RedisError as e:
            raise BlacklistError(f"Blacklist lookup failed: {e}") from e

    async def add(self, *creators: str) -> int:
        members = [_normalize(c) for c in creators if c and c.strip()]
        if not members:
            return 0
        try:
            return int(await self._redis.sadd(self._key, *members))
        except RedisError as e:
            raise BlacklistError(f"Blacklist update failed: {e}") from e

    async def remove(self, *creators: str) -> int:
        members = [_normalize(c) for c in creators if c and c.strip()]
        if not members:
            return 0
        try:
            return int(await self._redis.srem(self._key, *members))
        except RedisError as e:
            raise BlacklistError(f"Blacklist update failed: {e}") from e

    async def size(self) -> int:
        try:
            return int(await self._redis.scard(self._key))
        except RedisError as e:
            raise BlacklistError(f"Blacklist lookup failed: {e}") from e

    async def load_file(self, path: Path) -> int:
        """Merge a JSON array of addresses into the set.

        Returns:
            Number of newly added addresses.
        """
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise BlacklistError(f"{path} must contain a JSON array of addresses")
        added = await self.add(*_iter_addresses(raw))
        logger.info("Loaded creator blacklist from %s (%d new entries)", path, added)
        return added


def _iter_addresses(items: Iterable[object]) -> Iterable[str]:
    for item in items:
        if isinstance(item, str):
            yield item

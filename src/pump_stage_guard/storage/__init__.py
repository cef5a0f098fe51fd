"""Storage layer - in-memory TTL caches and the Redis creator blacklist."""

from pump_stage_guard.storage.blacklist import BlacklistError, CreatorBlacklist
from pump_stage_guard.storage.cache import KeyedTtlCache

__all__ = [
    "BlacklistError",
    "CreatorBlacklist",
    "KeyedTtlCache",
]

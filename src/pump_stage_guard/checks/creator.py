"""Creator behavior analysis.

Tracks launches per creator address inside a 24h activity window and
flags creators that deploy tokens in rapid succession.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import timedelta

from pump_stage_guard.checks.models import CreatorBehavior, CreatorCacheStats
from pump_stage_guard.storage.cache import Clock, KeyedTtlCache, utc_now
from pump_stage_guard.telemetry import CheckRecorder, record_check_outcome

logger = logging.getLogger(__name__)

RAPID_DEPLOYMENT_TAG = "rapid_deployment"

DEFAULT_RAPID_DEPLOYMENT_THRESHOLD = 3
DEFAULT_RAPID_DEPLOYMENT_PENALTY = 0.4
DEFAULT_SUSPICIOUS_RISK_THRESHOLD = 0.3
DEFAULT_CREATOR_TTL = timedelta(hours=24)
DEFAULT_SWEEP_INTERVAL = timedelta(minutes=1)

EXPECTED_ADDRESS_LENGTH = 44
BASE_QUALITY = 0.5
MALFORMED_ADDRESS_QUALITY = 0.1
LOW_ENTROPY_THRESHOLD = 3.5
HIGH_ENTROPY_THRESHOLD = 4.5
LOW_ENTROPY_PENALTY = 0.2
HIGH_ENTROPY_BONUS = 0.1
FEW_TOKENS_BONUS = 0.05
FALLBACK_QUALITY = 0.3


def shannon_entropy(value: str) -> float:
    """Shannon entropy of the character distribution of ``value``, in bits."""
    if not value:
        return 0.0
    total = len(value)
    return -sum((n / total) * math.log2(n / total) for n in Counter(value).values())


class CreatorBehaviorAnalyzer:
    """Scores creator addresses by their recent launch behavior.

    Each creator gets a lazily created ``CreatorBehavior`` entry. Every call
    counts as a launch and refreshes the activity timestamp, and each
    launch beyond ``rapid_deployment_threshold`` adds a fixed penalty
    to a risk score that never decreases while the entry lives.

    Example:
        ```python
        analyzer = CreatorBehaviorAnalyzer()
        analyzer.start()
        if not await analyzer.record_and_score(creator, mint):
            ...  # suspicious creator
        ```
    """

    def __init__(
        self,
        *,
        rapid_deployment_threshold: int = DEFAULT_RAPID_DEPLOYMENT_THRESHOLD,
        rapid_deployment_penalty: float = DEFAULT_RAPID_DEPLOYMENT_PENALTY,
        suspicious_threshold: float = DEFAULT_SUSPICIOUS_RISK_THRESHOLD,
        ttl: timedelta = DEFAULT_CREATOR_TTL,
        sweep_interval: timedelta = DEFAULT_SWEEP_INTERVAL,
        recorder: CheckRecorder | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._rapid_deployment_threshold = rapid_deployment_threshold
        self._rapid_deployment_penalty = rapid_deployment_penalty
        self._suspicious_threshold = suspicious_threshold
        self._recorder = recorder
        self._clock = clock or utc_now
        self._cache: KeyedTtlCache[CreatorBehavior] = KeyedTtlCache(
            name="creator",
            ttl=ttl,
            sweep_interval=sweep_interval,
            timestamp_of=lambda behavior: behavior.last_activity,
            clock=self._clock,
        )

    def start(self) -> None:
        self._cache.start()

    async def shutdown(self) -> None:
        await self._cache.shutdown()

    async def sweep(self) -> int:
        return await self._cache.sweep()

    async def record_and_score(self, creator: str, current_mint: str) -> bool:
        """Record a launch by ``creator`` and judge the creator.

        Returns:
            True if the creator is acceptable, False if suspicious.
        """
        now = self._clock()

        def new_entry() -> CreatorBehavior:
            return CreatorBehavior(first_seen=now, last_activity=now)

        async with self._cache.upsert(creator, new_entry) as behavior:
            behavior.last_activity = now
            behavior.token_count += 1
            if behavior.token_count > self._rapid_deployment_threshold:
                behavior.suspicious_patterns.add(RAPID_DEPLOYMENT_TAG)
                behavior.risk_score += self._rapid_deployment_penalty
            risk_score = behavior.risk_score
            token_count = behavior.token_count

        suspicious = risk_score > self._suspicious_threshold
        if suspicious:
            logger.debug(
                "Suspicious creator %s launching %s: tokens=%d risk=%.2f",
                creator[:8],
                current_mint[:8],
                token_count,
                risk_score,
            )
        record_check_outcome(self._recorder, "creator_behavior", not suspicious)
        return not suspicious

    async def quality_score(self, creator: str) -> float:
        """Heuristic creator quality in [0, 1]; higher is better."""
        try:
            if not creator or len(creator) != EXPECTED_ADDRESS_LENGTH:
                return MALFORMED_ADDRESS_QUALITY

            score = BASE_QUALITY
            entropy = shannon_entropy(creator)
            if entropy < LOW_ENTROPY_THRESHOLD:
                score -= LOW_ENTROPY_PENALTY
            elif entropy > HIGH_ENTROPY_THRESHOLD:
                score += HIGH_ENTROPY_BONUS

            async with self._cache.locked(creator) as behavior:
                if behavior is not None:
                    score -= behavior.risk_score
                    if 1 <= behavior.token_count <= 2:
                        score += FEW_TOKENS_BONUS

            return max(0.0, min(1.0, score))
        except Exception as e:
            logger.debug("Creator quality scoring failed for %r: %s", creator, e)
            return FALLBACK_QUALITY

    async def get(self, creator: str) -> CreatorBehavior | None:
        """Snapshot of the creator's entry, without creating one."""
        async with self._cache.locked(creator) as behavior:
            return behavior.copy() if behavior is not None else None

    def stats(self) -> CreatorCacheStats:
        entries = self._cache.values()
        if not entries:
            return CreatorCacheStats(size=0, oldest_entry=None, average_risk=0.0)
        return CreatorCacheStats(
            size=len(entries),
            oldest_entry=min(e.first_seen for e in entries),
            average_risk=sum(e.risk_score for e in entries) / len(entries),
        )

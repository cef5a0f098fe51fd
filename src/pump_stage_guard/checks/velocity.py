"""Trade velocity tracking.

Keeps a trailing window of buy events per mint and judges whether early
trading looks organic: enough distinct wallets, a plausible rate, and
amounts that are not suspiciously uniform.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

import numpy as np

from pump_stage_guard.checks.models import (
    BuyEvent,
    VelocityAnalysis,
    VelocityCacheStats,
    VelocityData,
    VelocityMetrics,
)
from pump_stage_guard.storage.cache import Clock, KeyedTtlCache, utc_now
from pump_stage_guard.telemetry import CheckRecorder, record_check_outcome

logger = logging.getLogger(__name__)

LOW_WALLET_DIVERSITY = "low_wallet_diversity"
EXCESSIVE_VELOCITY = "excessive_velocity"
UNIFORM_AMOUNTS = "uniform_amounts"
NO_ACTIVITY = "no_activity"

DEFAULT_VELOCITY_TTL = timedelta(hours=1)
DEFAULT_SWEEP_INTERVAL = timedelta(minutes=1)


@dataclass(frozen=True)
class VelocityThresholds:
    """Thresholds for the velocity warnings."""

    window: timedelta = timedelta(minutes=10)
    min_unique_wallet_ratio: float = 0.3
    min_events_for_diversity: int = 5
    max_events_per_minute: float = 15.0
    min_amount_cv: float = 0.1
    min_events_for_uniformity: int = 3
    no_activity_after: timedelta = timedelta(minutes=5)

    @property
    def window_minutes(self) -> float:
        return self.window.total_seconds() / 60.0


def coefficient_of_variation(amounts: list[float]) -> float:
    """Population standard deviation over mean; 0 when the mean is 0."""
    if not amounts:
        return 0.0
    values = np.asarray(amounts, dtype=float)
    mean = float(values.mean())
    if mean == 0:
        return 0.0
    return float(values.std()) / mean


class VelocityTracker:
    """Per-mint buy-event windows and their health analysis.

    ``record`` appends an event and trims the entry to the window so that
    ``buy_events`` and ``unique_wallets`` only ever describe the trailing
    window. ``total_volume`` is cumulative. ``analyze`` never changes
    recorded data; it only creates the entry on first lookup.
    """

    def __init__(
        self,
        *,
        thresholds: VelocityThresholds | None = None,
        ttl: timedelta = DEFAULT_VELOCITY_TTL,
        sweep_interval: timedelta = DEFAULT_SWEEP_INTERVAL,
        recorder: CheckRecorder | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._thresholds = thresholds or VelocityThresholds()
        self._recorder = recorder
        self._clock = clock or utc_now
        self._cache: KeyedTtlCache[VelocityData] = KeyedTtlCache(
            name="velocity",
            ttl=ttl,
            sweep_interval=sweep_interval,
            timestamp_of=lambda data: data.first_seen,
            clock=self._clock,
        )

    @property
    def thresholds(self) -> VelocityThresholds:
        return self._thresholds

    def start(self) -> None:
        self._cache.start()

    async def shutdown(self) -> None:
        await self._cache.shutdown()

    async def sweep(self) -> int:
        return await self._cache.sweep()

    def _new_entry(self, now: datetime) -> VelocityData:
        return VelocityData(first_seen=now)

    async def record(
        self,
        mint: str,
        wallet: str,
        amount: float,
        *,
        timestamp: datetime | None = None,
    ) -> None:
        """Record a buy of ``amount`` by ``wallet``."""
        if amount < 0:
            raise ValueError("amount must be non-negative")
        now = self._clock()
        ts = timestamp or now
        if ts.tzinfo is None:
            raise ValueError("timestamp must be timezone-aware")

        async with self._cache.upsert(mint, lambda: self._new_entry(now)) as data:
            data.buy_events.append(BuyEvent(timestamp=ts, wallet=wallet, amount=amount))
            data.total_volume += amount
            cutoff = now - self._thresholds.window
            data.buy_events = [e for e in data.buy_events if e.timestamp >= cutoff]
            data.unique_wallets = {e.wallet for e in data.buy_events}

    async def analyze(self, mint: str) -> VelocityAnalysis:
        now = self._clock()
        t = self._thresholds

        async with self._cache.upsert(mint, lambda: self._new_entry(now)) as data:
            cutoff = now - t.window
            events = [e for e in data.buy_events if e.timestamp >= cutoff]
            first_seen = data.first_seen
            total_volume = data.total_volume

        event_count = len(events)
        unique_wallets = len({e.wallet for e in events})
        amounts = [e.amount for e in events]

        metrics = VelocityMetrics(
            events_per_minute=event_count / t.window_minutes,
            unique_wallet_ratio=unique_wallets / event_count if event_count else 1.0,
            average_amount=float(np.mean(amounts)) if amounts else 0.0,
            total_volume=total_volume,
            event_count=event_count,
            unique_wallets=unique_wallets,
        )

        warnings: list[str] = []
        if metrics.unique_wallet_ratio < t.min_unique_wallet_ratio and event_count > t.min_events_for_diversity:
            warnings.append(LOW_WALLET_DIVERSITY)
        if metrics.events_per_minute > t.max_events_per_minute:
            warnings.append(EXCESSIVE_VELOCITY)
        # zero-volume buys carry no sizing signal
        if (
            event_count >= t.min_events_for_uniformity
            and metrics.average_amount > 0
            and coefficient_of_variation(amounts) < t.min_amount_cv
        ):
            warnings.append(UNIFORM_AMOUNTS)
        if event_count == 0 and now - first_seen > t.no_activity_after:
            warnings.append(NO_ACTIVITY)

        healthy = not warnings
        if not healthy:
            logger.debug("Velocity warnings for %s: %s", mint[:8], ", ".join(warnings))
        record_check_outcome(self._recorder, "velocity", healthy)
        return VelocityAnalysis(
            is_healthy=healthy,
            metrics=metrics,
            warnings=tuple(warnings),
            first_seen=first_seen,
        )

    async def clear_token(self, mint: str) -> None:
        await self._cache.remove(mint)

    async def clear_all(self) -> None:
        await self._cache.clear()

    def stats(self) -> VelocityCacheStats:
        entries = self._cache.values()
        return VelocityCacheStats(
            size=len(entries),
            total_events=sum(len(e.buy_events) for e in entries),
            oldest_entry=min((e.first_seen for e in entries), default=None),
        )

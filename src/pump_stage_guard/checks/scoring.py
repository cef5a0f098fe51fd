"""Pre-bond token scoring.

Combines four weighted heuristics into a single score in [0, 1]:

    name quality        0.3
    creator quality     0.4
    launch timing       0.2
    market conditions   0.1

The evaluator compares the score on the legacy 1-7 scale
(``1 + score * 6``) against its configured minimum.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from pump_stage_guard.checks.creator import CreatorBehaviorAnalyzer
from pump_stage_guard.checks.models import PreBondScore
from pump_stage_guard.storage.cache import Clock, utc_now

logger = logging.getLogger(__name__)

NAME_WEIGHT = 0.3
CREATOR_WEIGHT = 0.4
TIMING_WEIGHT = 0.2
MARKET_WEIGHT = 0.1

FALLBACK_SCORE = 0.1
MIN_IDENTIFIER_LENGTH = 32

_SPAM_PATTERNS = (
    re.compile(r"^[0-9]+$"),
    re.compile(r"(.)\1{10,}"),
    re.compile(r"test|fake|scam", re.IGNORECASE),
)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def name_quality(identifier: str) -> float:
    """Score a token identifier for spam patterns and character variety."""
    if not identifier or len(identifier) < MIN_IDENTIFIER_LENGTH:
        return 0.1

    score = 0.5
    if any(p.search(identifier) for p in _SPAM_PATTERNS):
        score -= 0.3
    if (
        any(c.isupper() for c in identifier)
        and any(c.islower() for c in identifier)
        and any(c.isdigit() for c in identifier)
    ):
        score += 0.1
    return _clamp(score)


def timing_score(now: datetime, created_at: datetime | None) -> float:
    """Prefer active UTC trading hours, weekdays and launches a few minutes old."""
    score = 0.5
    hour = now.hour
    if 13 <= hour <= 21:
        score += 0.2
    elif 8 <= hour <= 12 or 0 <= hour <= 6:
        score += 0.1
    else:
        score -= 0.1

    if now.weekday() < 5:
        score += 0.1
    else:
        score -= 0.05

    if created_at is not None:
        age_minutes = (now - created_at).total_seconds() / 60.0
        if 5 <= age_minutes <= 60:
            score += 0.05
        elif age_minutes < 2:
            score -= 0.1
        elif age_minutes > 120:
            score -= 0.05
    return _clamp(score)


def market_conditions_score(now: datetime) -> float:
    hour = now.hour
    if 14 <= hour <= 20:
        return 0.7
    if 8 <= hour <= 13:
        return 0.6
    return 0.4


class TokenScorer:
    """Computes the pre-bond score for a candidate."""

    def __init__(self, creator_analyzer: CreatorBehaviorAnalyzer, *, clock: Clock | None = None) -> None:
        self._creator_analyzer = creator_analyzer
        self._clock = clock or utc_now

    async def score(self, *, mint: str, creator: str, created_at: datetime | None) -> PreBondScore:
        now = self._clock()
        name = name_quality(mint)
        creator_quality = await self._creator_analyzer.quality_score(creator)
        timing = timing_score(now, created_at)
        market = market_conditions_score(now)
        total = _clamp(
            name * NAME_WEIGHT
            + creator_quality * CREATOR_WEIGHT
            + timing * TIMING_WEIGHT
            + market * MARKET_WEIGHT
        )
        logger.debug(
            "Pre-bond score for %s: name=%.2f creator=%.2f timing=%.2f market=%.2f total=%.2f",
            mint[:8],
            name,
            creator_quality,
            timing,
            market,
            total,
        )
        return PreBondScore(
            name_quality=name,
            creator_quality=creator_quality,
            timing=timing,
            market_conditions=market,
            total=total,
        )

    async def pre_bond_score(self, *, mint: str, creator: str, created_at: datetime | None) -> float:
        """Total score in [0, 1], or a low fallback if scoring fails."""
        try:
            return (await self.score(mint=mint, creator=creator, created_at=created_at)).total
        except Exception as e:
            logger.warning("Pre-bond scoring failed for %s: %s", mint[:8], e)
            return FALLBACK_SCORE

"""Tests for pre-bond scoring."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from pump_stage_guard.checks.creator import CreatorBehaviorAnalyzer
from pump_stage_guard.checks.scoring import (
    FALLBACK_SCORE,
    TokenScorer,
    market_conditions_score,
    name_quality,
    timing_score,
)

WEDNESDAY = datetime(2025, 3, 12, 15, 0, tzinfo=UTC)
SATURDAY_NIGHT = datetime(2025, 3, 15, 23, 0, tzinfo=UTC)


class TestNameQuality:
    """Tests for the identifier heuristic."""

    def test_short_identifier(self):
        assert name_quality("abc") == 0.1
        assert name_quality("") == 0.1

    def test_mixed_identifier(self, sample_mint):
        assert name_quality(sample_mint) == pytest.approx(0.6)

    def test_spam_pattern(self):
        assert name_quality("1" * 40) == pytest.approx(0.2)
        assert name_quality("TestToken" + "a1B" * 10) == pytest.approx(0.3)


class TestTimingScore:
    """Tests for the launch timing heuristic."""

    def test_weekday_peak_hours(self):
        assert timing_score(WEDNESDAY, None) == pytest.approx(0.8)

    def test_weekend_late_night(self):
        assert timing_score(SATURDAY_NIGHT, None) == pytest.approx(0.35)

    def test_age_adjustments(self):
        assert timing_score(WEDNESDAY, WEDNESDAY - timedelta(minutes=10)) == pytest.approx(0.85)
        assert timing_score(WEDNESDAY, WEDNESDAY - timedelta(minutes=1)) == pytest.approx(0.7)
        assert timing_score(WEDNESDAY, WEDNESDAY - timedelta(hours=3)) == pytest.approx(0.75)


def test_market_conditions_score():
    assert market_conditions_score(WEDNESDAY) == 0.7
    assert market_conditions_score(WEDNESDAY.replace(hour=9)) == 0.6
    assert market_conditions_score(SATURDAY_NIGHT) == 0.4


class TestTokenScorer:
    """Tests for the weighted pre-bond score."""

    @pytest.mark.asyncio
    async def test_weighted_total(self, sample_mint, sample_creator):
        analyzer = AsyncMock(spec=CreatorBehaviorAnalyzer)
        analyzer.quality_score.return_value = 0.5
        scorer = TokenScorer(analyzer, clock=lambda: WEDNESDAY)

        result = await scorer.score(mint=sample_mint, creator=sample_creator, created_at=None)

        # 0.6 * 0.3 + 0.5 * 0.4 + 0.8 * 0.2 + 0.7 * 0.1
        assert result.total == pytest.approx(0.61)
        assert result.name_quality == pytest.approx(0.6)
        assert result.creator_quality == 0.5

    @pytest.mark.asyncio
    async def test_score_in_unit_interval(self, sample_mint, sample_creator):
        scorer = TokenScorer(CreatorBehaviorAnalyzer(clock=lambda: WEDNESDAY), clock=lambda: WEDNESDAY)

        total = await scorer.pre_bond_score(mint=sample_mint, creator=sample_creator, created_at=WEDNESDAY)

        assert 0.0 <= total <= 1.0

    @pytest.mark.asyncio
    async def test_fallback_on_error(self, sample_mint, sample_creator):
        analyzer = AsyncMock(spec=CreatorBehaviorAnalyzer)
        analyzer.quality_score.side_effect = RuntimeError("boom")
        scorer = TokenScorer(analyzer, clock=lambda: WEDNESDAY)

        total = await scorer.pre_bond_score(mint=sample_mint, creator=sample_creator, created_at=None)

        assert total == FALLBACK_SCORE

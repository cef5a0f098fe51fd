"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pump_stage_guard.checks.models import MintAuthorityInfo
from pump_stage_guard.config import Settings
from pump_stage_guard.ingestor.models import TradeEvent
from pump_stage_guard.lifecycle.models import DiscoveryEvent, FailureReason, TokenMetadata, TokenStage
from pump_stage_guard.pipeline import Pipeline, PipelineState

GOOD_METADATA = TokenMetadata(name="Good Token", symbol="GOOD", image_uri="https://img.example/good.png")


@pytest.fixture
def settings(monkeypatch):
    """Create settings with the stream and Redis disabled."""
    monkeypatch.setenv("INGEST_ENABLED", "false")
    monkeypatch.setenv("REDIS_ENABLED", "false")
    return Settings()


@pytest.fixture
def routing_client():
    """Create a routing client that routes everything."""
    client = AsyncMock()
    client.has_route.return_value = True
    client.quote.return_value = None
    return client


@pytest.fixture
def ledger_reader():
    """Create a ledger reader reporting revoked authorities."""
    ledger = AsyncMock()
    ledger.get_parsed_mint_info.return_value = MintAuthorityInfo(None, None)
    return ledger


@pytest.fixture
def pipeline(settings, routing_client, ledger_reader, clock):
    return Pipeline(settings, routing_client=routing_client, ledger_reader=ledger_reader, clock=clock)


def create_discovery_event(
    clock,
    *,
    mint: str = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU",
    creator: str = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM",
    metadata: TokenMetadata | None = GOOD_METADATA,
) -> DiscoveryEvent:
    """Create a DiscoveryEvent for testing."""
    return DiscoveryEvent(mint=mint, creator=creator, timestamp=clock(), metadata=metadata, source="test")


def mint_for(index: int) -> str:
    return f"7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJos{index:04d}"


def creator_for(index: int) -> str:
    return f"9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYt{index:04d}"


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, pipeline):
        """Pipeline should start in stopped state."""
        assert pipeline.state == PipelineState.STOPPED
        assert not pipeline.is_running

    def test_initial_stats(self, pipeline):
        """Pipeline should have zero stats initially."""
        stats = pipeline.stats

        assert stats.started_at is None
        assert stats.tokens_discovered == 0
        assert stats.ready == 0
        assert stats.errors == 0

    def test_uses_get_settings_when_none_provided(self):
        """Pipeline should call get_settings if no settings provided."""
        with patch("pump_stage_guard.pipeline.get_settings") as mock_get:
            fake_settings = MagicMock(spec=Settings)
            fake_settings.pipeline = MagicMock(ready_queue_size=10)
            mock_get.return_value = fake_settings
            Pipeline()
            mock_get.assert_called_once()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, pipeline, clock):
        """Context manager should start and stop the pipeline."""
        async with pipeline as running:
            assert running.is_running
            assert running.stats.started_at == clock()
            with pytest.raises(RuntimeError):
                await running.start()

        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_when_stopped_is_noop(self, pipeline):
        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED


class TestDiscovery:
    """Tests for candidate registration."""

    @pytest.mark.asyncio
    async def test_new_token_registered_at_pre_bond(self, pipeline, clock):
        await pipeline._initialize_components()
        event = create_discovery_event(clock)

        assert await pipeline.on_new_token(event) is True

        candidate = pipeline.get_candidate(event.mint)
        assert candidate.stage is TokenStage.PRE_BOND
        assert candidate.max_attempts == 5
        assert candidate.retry_window_ms == 600_000
        assert pipeline.stage_counts()["pre_bond"] == 1
        assert pipeline.metrics.stage_entries["pre_bond"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_ignored(self, pipeline, clock):
        await pipeline._initialize_components()
        event = create_discovery_event(clock)

        await pipeline.on_new_token(event)
        assert await pipeline.on_new_token(event) is False

        assert pipeline.stats.tokens_discovered == 1
        assert pipeline.stats.duplicates_ignored == 1

    @pytest.mark.asyncio
    async def test_buys_feed_velocity(self, pipeline, clock):
        await pipeline._initialize_components()
        event = create_discovery_event(clock)
        await pipeline.on_new_token(event)

        await pipeline.on_trade(TradeEvent(mint=event.mint, wallet="w1", side="buy", sol_amount=0.5, timestamp=clock()))
        await pipeline.on_trade(TradeEvent(mint=event.mint, wallet="w2", side="sell", sol_amount=0.5, timestamp=clock()))
        await pipeline.on_trade(TradeEvent(mint="untracked", wallet="w3", side="buy", sol_amount=1.0, timestamp=clock()))

        assert pipeline.stats.trades_recorded == 1
        assert pipeline._velocity.stats().total_events == 1


class TestProcessing:
    """Tests for scheduling evaluations."""

    @pytest.mark.asyncio
    async def test_token_walks_to_ready(self, pipeline, clock):
        """A clean token should pass every stage and land in the ready queue."""
        await pipeline._initialize_components()
        event = create_discovery_event(clock)
        await pipeline.on_new_token(event)

        for expected in (TokenStage.BONDED_ON_PUMP, TokenStage.RAYDIUM_LISTED):
            assert await pipeline.process_due_candidates() == 1
            assert pipeline.get_candidate(event.mint).stage is expected

        assert await pipeline.process_due_candidates() == 1

        assert pipeline.get_candidate(event.mint) is None
        ready = pipeline.get_ready_token()
        assert ready.mint == event.mint
        assert ready.is_ready
        assert pipeline.get_ready_token() is None
        assert pipeline.stats.advanced == 2
        assert pipeline.stats.ready == 1
        assert pipeline.metrics.ready_tokens == 1

    @pytest.mark.asyncio
    async def test_failure_schedules_retry(self, pipeline, clock):
        await pipeline._initialize_components()
        event = create_discovery_event(clock, metadata=TokenMetadata(name="Good Token", symbol="GOOD"))
        await pipeline.on_new_token(event)

        await pipeline.process_due_candidates()

        candidate = pipeline.get_candidate(event.mint)
        assert candidate.next_check_at == clock() + timedelta(milliseconds=2000)
        assert pipeline.stats.retries == 1
        assert pipeline.metrics.failure_counts["no_image"] == 1

        assert await pipeline.process_due_candidates() == 0
        clock.advance(seconds=3)
        assert await pipeline.process_due_candidates() == 1
        assert candidate.attempts == 2

    @pytest.mark.asyncio
    async def test_drop_removes_candidate(self, monkeypatch, routing_client, ledger_reader, clock):
        monkeypatch.setenv("INGEST_ENABLED", "false")
        monkeypatch.setenv("REDIS_ENABLED", "false")
        monkeypatch.setenv("EVALUATOR_MAX_ATTEMPTS", "1")
        pipeline = Pipeline(Settings(), routing_client=routing_client, ledger_reader=ledger_reader, clock=clock)
        await pipeline._initialize_components()
        event = create_discovery_event(clock, metadata=TokenMetadata(name="Good Token", symbol="GOOD"))
        await pipeline.on_new_token(event)

        await pipeline.process_due_candidates()

        assert pipeline.get_candidate(event.mint) is None
        assert pipeline.stats.dropped == 1
        report = pipeline.recent_drops[0]
        assert report.mint == event.mint
        assert report.stage is TokenStage.PRE_BOND
        assert FailureReason.NO_IMAGE in report.result.failure_history
        assert pipeline.metrics.drops_by_stage["pre_bond"] == 1

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, monkeypatch, routing_client, ledger_reader, clock):
        monkeypatch.setenv("INGEST_ENABLED", "false")
        monkeypatch.setenv("REDIS_ENABLED", "false")
        monkeypatch.setenv("PIPELINE_MAX_CONCURRENT_EVALUATIONS", "2")
        pipeline = Pipeline(Settings(), routing_client=routing_client, ledger_reader=ledger_reader, clock=clock)
        await pipeline._initialize_components()
        for i in range(3):
            await pipeline.on_new_token(create_discovery_event(clock, mint=mint_for(i), creator=creator_for(i)))

        assert await pipeline.process_due_candidates() == 2
        assert pipeline.stage_counts() == {"pre_bond": 1, "bonded_on_pump": 2, "raydium_listed": 0}

    @pytest.mark.asyncio
    async def test_evaluation_error_counted(self, pipeline, clock):
        await pipeline._initialize_components()
        await pipeline.on_new_token(create_discovery_event(clock))
        pipeline._evaluator.evaluate = AsyncMock(side_effect=RuntimeError("boom"))

        await pipeline.process_due_candidates()

        assert pipeline.stats.errors == 1
        assert pipeline.stats.last_error == "boom"

    @pytest.mark.asyncio
    async def test_requires_initialization(self, pipeline):
        with pytest.raises(RuntimeError):
            await pipeline.process_due_candidates()


class TestAgeOut:
    """Tests for removing stale candidates."""

    @pytest.mark.asyncio
    async def test_candidate_past_retry_window(self, pipeline, clock):
        await pipeline._initialize_components()
        event = create_discovery_event(clock)
        await pipeline.on_new_token(event)
        candidate = pipeline.get_candidate(event.mint)
        clock.advance(minutes=11)

        assert await pipeline.age_out() == 1

        assert pipeline.get_candidate(event.mint) is None
        assert candidate.active is False
        assert pipeline.stats.aged_out == 1

    @pytest.mark.asyncio
    async def test_fresh_candidate_kept(self, pipeline, clock):
        await pipeline._initialize_components()
        await pipeline.on_new_token(create_discovery_event(clock))
        clock.advance(minutes=5)

        assert await pipeline.age_out() == 0


class TestTradeSubscriptions:
    """Tests for stream subscription bookkeeping."""

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe_on_age_out(self, pipeline, clock):
        """Trade subscriptions should be released before age_out returns."""
        await pipeline._initialize_components()
        pipeline._stream = AsyncMock()
        event = create_discovery_event(clock)
        await pipeline.on_new_token(event)

        pipeline._stream.request_trade_subscription.assert_awaited_once_with({event.mint})

        clock.advance(minutes=11)
        await pipeline.age_out()

        pipeline._stream.request_trade_unsubscription.assert_awaited_once_with({event.mint})

    @pytest.mark.asyncio
    async def test_unsubscribe_on_ready(self, pipeline, clock):
        await pipeline._initialize_components()
        pipeline._stream = AsyncMock()
        event = create_discovery_event(clock)
        await pipeline.on_new_token(event)

        for _ in range(3):
            await pipeline.process_due_candidates()

        assert pipeline.get_ready_token().mint == event.mint
        pipeline._stream.request_trade_unsubscription.assert_awaited_once_with({event.mint})

    @pytest.mark.asyncio
    async def test_unsubscribe_failure_counted(self, pipeline, clock):
        """A failing unsubscribe surfaces as an evaluation error, not a lost task."""
        await pipeline._initialize_components()
        pipeline._stream = AsyncMock()
        pipeline._stream.request_trade_unsubscription.side_effect = RuntimeError("stream closed")
        await pipeline.on_new_token(create_discovery_event(clock))

        for _ in range(3):
            await pipeline.process_due_candidates()

        assert pipeline.stats.errors == 1
        assert pipeline.stats.last_error == "stream closed"

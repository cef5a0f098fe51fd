"""Main pipeline orchestrator for the stage guard.

This module provides the Pipeline class that owns the candidate registry,
wires the checks and the evaluator together, and schedules evaluations
from discovery until a token is ready, dropped, or aged out.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from redis.asyncio import Redis

from pump_stage_guard.checks.authorities import AuthorityChecker, LedgerReader
from pump_stage_guard.checks.creator import CreatorBehaviorAnalyzer
from pump_stage_guard.checks.route import RouteChecker, RoutingClient
from pump_stage_guard.checks.scoring import TokenScorer
from pump_stage_guard.checks.velocity import VelocityTracker
from pump_stage_guard.clients.jupiter import JupiterClient
from pump_stage_guard.clients.ledger import SolanaLedgerClient
from pump_stage_guard.config import Settings, get_settings
from pump_stage_guard.ingestor.models import TradeEvent
from pump_stage_guard.ingestor.pumpportal import PumpPortalStreamHandler
from pump_stage_guard.lifecycle.evaluator import ListedCheck, MetadataProvider, StageEvaluator
from pump_stage_guard.lifecycle.models import (
    Candidate,
    DiscoveryEvent,
    StageTransitionResult,
    TokenStage,
)
from pump_stage_guard.storage.blacklist import CreatorBlacklist
from pump_stage_guard.storage.cache import Clock, utc_now
from pump_stage_guard.telemetry import StageMetrics

logger = logging.getLogger(__name__)

RECENT_DROPS_LIMIT = 100


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    tokens_discovered: int = 0
    duplicates_ignored: int = 0
    trades_recorded: int = 0
    evaluations: int = 0
    advanced: int = 0
    retries: int = 0
    dropped: int = 0
    ready: int = 0
    aged_out: int = 0
    stale_results: int = 0
    errors: int = 0
    last_error: str | None = None


@dataclass(frozen=True)
class DropReport:
    """A rejected token and the full history that led to it."""

    mint: str
    stage: TokenStage
    result: StageTransitionResult
    dropped_at: datetime


class Pipeline:
    """Main pipeline orchestrator for the stage guard.

    Pipeline flow:
        PumpPortal stream → on_new_token → PRE_BOND → BONDED_ON_PUMP →
        RAYDIUM_LISTED → ready queue

    Example:
        ```python
        from pump_stage_guard.config import get_settings
        from pump_stage_guard.pipeline import Pipeline

        async with Pipeline(get_settings()) as pipeline:
            ...
            token = pipeline.get_ready_token()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        routing_client: RoutingClient | None = None,
        ledger_reader: LedgerReader | None = None,
        blacklist: CreatorBlacklist | None = None,
        metadata_provider: MetadataProvider | None = None,
        listed_checks: Sequence[ListedCheck] = (),
        clock: Clock | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            routing_client: Routing adapter; defaults to a Jupiter client.
            ledger_reader: Ledger adapter; defaults to a Solana RPC client.
            blacklist: Creator blacklist; defaults to Redis when enabled.
            metadata_provider: Metadata source for launches without metadata.
            listed_checks: Extra checks for the RAYDIUM_LISTED stage.
            clock: Injectable time source.
        """
        self._settings = settings or get_settings()
        self._clock = clock or utc_now

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()
        self._metrics = StageMetrics()

        self._routing_client = routing_client
        self._ledger_reader = ledger_reader
        self._blacklist = blacklist
        self._metadata_provider = metadata_provider
        self._listed_checks = tuple(listed_checks)
        self._owned_closers: list[Any] = []

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._creators: CreatorBehaviorAnalyzer | None = None
        self._velocity: VelocityTracker | None = None
        self._evaluator: StageEvaluator | None = None
        self._stream: PumpPortalStreamHandler | None = None

        self._candidates: dict[str, Candidate] = {}
        self._ready: deque[Candidate] = deque(maxlen=self._settings.pipeline.ready_queue_size)
        self._recent_drops: deque[DropReport] = deque(maxlen=RECENT_DROPS_LIMIT)
        self._process_lock = asyncio.Lock()

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._stream_task: asyncio.Task[None] | None = None
        self._process_task: asyncio.Task[None] | None = None
        self._cleanup_task: asyncio.Task[None] | None = None
        self._stats_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def metrics(self) -> StageMetrics:
        return self._metrics

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def recent_drops(self) -> list[DropReport]:
        return list(self._recent_drops)

    def get_candidate(self, mint: str) -> Candidate | None:
        return self._candidates.get(mint)

    def candidates(self) -> list[Candidate]:
        return list(self._candidates.values())

    def stage_counts(self) -> dict[str, int]:
        counts = {stage.value: 0 for stage in TokenStage if not stage.is_terminal}
        for candidate in self._candidates.values():
            counts[candidate.stage.value] += 1
        return counts

    def get_ready_token(self) -> Candidate | None:
        """Pop the oldest token that passed every stage, if any."""
        return self._ready.popleft() if self._ready else None

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = self._clock()
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._stop_background_services()
            await self._cleanup()
            self._state = PipelineState.STOPPED
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        if self._blacklist is None and settings.redis.enabled:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)
            self._blacklist = CreatorBlacklist(self._redis, key=settings.redis.blacklist_key)
            if settings.blacklist_file:
                await self._blacklist.load_file(Path(settings.blacklist_file))

        if self._routing_client is None:
            logger.debug("Initializing Jupiter client...")
            jupiter = JupiterClient(
                settings.routing.jupiter_api_url,
                slippage_bps=settings.routing.slippage_bps,
                request_timeout_seconds=settings.routing.request_timeout_seconds,
            )
            self._routing_client = jupiter
            self._owned_closers.append(jupiter)

        if self._ledger_reader is None:
            logger.debug("Initializing Solana ledger client...")
            ledger = SolanaLedgerClient(settings.solana.rpc_url, commitment=settings.solana.commitment)
            self._ledger_reader = ledger
            self._owned_closers.append(ledger)

        timeout = settings.evaluator.collaborator_timeout_seconds
        self._creators = CreatorBehaviorAnalyzer(
            rapid_deployment_threshold=settings.creator.rapid_deployment_threshold,
            rapid_deployment_penalty=settings.creator.rapid_deployment_penalty,
            suspicious_threshold=settings.creator.suspicious_risk_threshold,
            ttl=timedelta(hours=settings.creator.ttl_hours),
            sweep_interval=timedelta(seconds=settings.creator.sweep_interval_seconds),
            recorder=self._metrics,
            clock=self._clock,
        )
        self._velocity = VelocityTracker(
            thresholds=settings.velocity_thresholds(),
            ttl=timedelta(minutes=settings.velocity.ttl_minutes),
            sweep_interval=timedelta(seconds=settings.velocity.sweep_interval_seconds),
            recorder=self._metrics,
            clock=self._clock,
        )
        self._evaluator = StageEvaluator(
            creator_analyzer=self._creators,
            velocity_tracker=self._velocity,
            route_checker=RouteChecker(
                self._routing_client,
                reference_mint=settings.routing.reference_mint,
                probe_amount_sol=settings.routing.probe_amount_sol,
                timeout_seconds=timeout,
                recorder=self._metrics,
            ),
            authority_checker=AuthorityChecker(
                self._ledger_reader,
                timeout_seconds=timeout,
                recorder=self._metrics,
            ),
            token_scorer=TokenScorer(self._creators, clock=self._clock),
            blacklist=self._blacklist,
            metadata_provider=self._metadata_provider,
            listed_checks=self._listed_checks,
            config=settings.evaluator_config(),
            recorder=self._metrics,
            clock=self._clock,
        )

        if settings.ingest.enabled:
            logger.debug("Initializing PumpPortal stream...")
            self._stream = PumpPortalStreamHandler(
                host=settings.ingest.pumpportal_ws_url,
                on_token=self.on_new_token,
                on_trade=self.on_trade,
            )

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._creators:
            self._creators.start()
        if self._velocity:
            self._velocity.start()

        logger.debug("Starting processing, cleanup and stats loops...")
        self._process_task = asyncio.create_task(self._run_processing_loop())
        self._cleanup_task = asyncio.create_task(self._run_cleanup_loop())
        self._stats_task = asyncio.create_task(self._run_stats_loop())

        if self._stream:
            logger.debug("Starting PumpPortal stream...")
            self._stream_task = asyncio.create_task(self._run_stream())

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._stream:
            logger.debug("Stopping PumpPortal stream...")
            await self._stream.stop()

        for name in ("_stream_task", "_process_task", "_cleanup_task", "_stats_task"):
            task: asyncio.Task[None] | None = getattr(self, name)
            if task:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                setattr(self, name, None)

        if self._creators:
            await self._creators.shutdown()
        if self._velocity:
            await self._velocity.shutdown()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        for closer in self._owned_closers:
            try:
                await closer.close()
            except Exception as e:
                logger.warning("Error closing %s: %s", type(closer).__name__, e)
        self._owned_closers.clear()

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def _run_stream(self) -> None:
        """Run the PumpPortal stream in a task."""
        if not self._stream:
            return

        try:
            await self._stream.start()
        except asyncio.CancelledError:
            logger.debug("PumpPortal stream task cancelled")
        except Exception as e:
            logger.error("PumpPortal stream error: %s", e)
            self._stats.last_error = str(e)

    async def _run_periodic(self, interval: float, name: str, action: Any) -> None:
        if not self._stop_event:
            return

        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except TimeoutError:
                    pass

                await action()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("%s loop error: %s", name, e)

    async def _run_processing_loop(self) -> None:
        await self._run_periodic(
            self._settings.pipeline.process_interval_seconds,
            "Processing",
            self.process_due_candidates,
        )

    async def _run_cleanup_loop(self) -> None:
        await self._run_periodic(
            self._settings.pipeline.cleanup_interval_seconds,
            "Cleanup",
            self.age_out,
        )

    async def _run_stats_loop(self) -> None:
        await self._run_periodic(
            self._settings.pipeline.stats_interval_seconds,
            "Stats",
            self._log_stats,
        )

    async def _log_stats(self) -> None:
        creators = self._creators.stats() if self._creators else None
        velocity = self._velocity.stats() if self._velocity else None
        logger.info(
            "Pipeline stats: candidates=%s discovered=%d ready=%d dropped=%d aged_out=%d errors=%d",
            self.stage_counts(),
            self._stats.tokens_discovered,
            self._stats.ready,
            self._stats.dropped,
            self._stats.aged_out,
            self._stats.errors,
        )
        if creators and velocity:
            logger.info(
                "Cache stats: creators=%d (avg risk %.2f) velocity=%d (%d events)",
                creators.size,
                creators.average_risk,
                velocity.size,
                velocity.total_events,
            )
        logger.debug("Stage metrics: %s", self._metrics.summary())

    async def on_new_token(self, event: DiscoveryEvent) -> bool:
        """Register a newly launched token at PRE_BOND.

        Returns:
            True if a new candidate was created, False for duplicates.
        """
        if event.mint in self._candidates:
            self._stats.duplicates_ignored += 1
            return False

        evaluator_settings = self._settings.evaluator
        candidate = Candidate.from_discovery(
            event,
            discovered_at=self._clock(),
            max_attempts=evaluator_settings.max_attempts,
            retry_window_ms=evaluator_settings.retry_window_seconds * 1000,
        )
        self._candidates[event.mint] = candidate
        self._stats.tokens_discovered += 1
        self._metrics.record_stage_entry(TokenStage.PRE_BOND)
        logger.debug("Tracking %s from %s (creator %s)", event.mint[:8], event.source, event.creator[:8])

        if self._stream:
            await self._stream.request_trade_subscription({event.mint})
        return True

    async def on_trade(self, trade: TradeEvent) -> None:
        """Feed buys on tracked tokens into the velocity tracker."""
        if not trade.is_buy or trade.mint not in self._candidates or not self._velocity:
            return
        await self._velocity.record(trade.mint, trade.wallet, trade.sol_amount, timestamp=trade.timestamp)
        self._stats.trades_recorded += 1

    async def process_due_candidates(self) -> int:
        """Evaluate every candidate whose retry delay has elapsed.

        At most ``max_concurrent_evaluations`` candidates are evaluated per
        pass, concurrently.

        Returns:
            Number of candidates evaluated.
        """
        evaluator = self._evaluator
        if not evaluator:
            raise RuntimeError("Pipeline components are not initialized")

        async with self._process_lock:
            now = self._clock()
            limit = self._settings.pipeline.max_concurrent_evaluations
            due = [
                c
                for c in self._candidates.values()
                if c.active
                and not evaluator.is_in_flight(c.mint)
                and (c.next_check_at is None or c.next_check_at <= now)
            ][:limit]
            if not due:
                return 0

            results = await asyncio.gather(*(self._evaluate_one(evaluator, c) for c in due), return_exceptions=True)
            for candidate, result in zip(due, results):
                if isinstance(result, Exception):
                    self._stats.errors += 1
                    self._stats.last_error = str(result)
                    logger.error("Evaluation of %s failed: %s", candidate.mint[:8], result)
            return len(due)

    async def _evaluate_one(self, evaluator: StageEvaluator, candidate: Candidate) -> None:
        previous_stage = candidate.stage
        stage_entered_at = candidate.stage_entered_at or candidate.discovered_at
        result = await evaluator.evaluate(candidate)
        self._stats.evaluations += 1
        await self._apply_result(candidate, previous_stage, stage_entered_at, result)

    async def _apply_result(
        self,
        candidate: Candidate,
        previous_stage: TokenStage,
        stage_entered_at: datetime,
        result: StageTransitionResult,
    ) -> None:
        now = self._clock()
        time_in_stage_ms = (now - stage_entered_at).total_seconds() * 1000

        if result.stale:
            self._stats.stale_results += 1
            return

        if result.reasons:
            self._metrics.record_failures(result.reasons)

        if result.should_drop:
            self._metrics.record_stage_exit(previous_stage, time_in_stage_ms=time_in_stage_ms)
            self._metrics.record_drop(previous_stage)
            self._stats.dropped += 1
            self._recent_drops.append(
                DropReport(mint=candidate.mint, stage=previous_stage, result=result, dropped_at=now)
            )
            await self._release(candidate)
            return

        if result.success and result.new_stage is not None:
            self._metrics.record_stage_exit(previous_stage, time_in_stage_ms=time_in_stage_ms)
            self._metrics.record_stage_entry(result.new_stage)
            self._stats.advanced += 1
            candidate.next_check_at = None
            return

        if result.success:
            self._metrics.record_stage_exit(previous_stage, time_in_stage_ms=time_in_stage_ms)
            self._metrics.record_ready()
            self._stats.ready += 1
            self._ready.append(candidate)
            await self._release(candidate)
            return

        if result.reasons:
            self._stats.retries += 1
        candidate.next_check_at = now + timedelta(milliseconds=result.retry_after_ms or 0)

    async def _release(self, candidate: Candidate) -> None:
        """Stop tracking ``candidate``; in-flight results for it become stale."""
        if self._candidates.get(candidate.mint) is candidate:
            del self._candidates[candidate.mint]
        candidate.retire()
        if self._stream:
            await self._stream.request_trade_unsubscription({candidate.mint})

    async def age_out(self) -> int:
        """Remove candidates past their stage retry window or maximum age.

        Returns:
            Number of candidates removed.
        """
        now = self._clock()
        max_age = timedelta(minutes=self._settings.pipeline.max_candidate_age_minutes)
        removed = 0
        for candidate in list(self._candidates.values()):
            in_stage = now - (candidate.stage_entered_at or candidate.discovered_at)
            too_old = now - candidate.discovered_at > max_age
            stuck = in_stage > timedelta(milliseconds=candidate.retry_window_ms)
            if too_old or stuck:
                logger.info(
                    "Aging out %s at %s (%s)",
                    candidate.mint[:8],
                    candidate.stage.value,
                    "max age" if too_old else "retry window",
                )
                self._metrics.record_stage_exit(candidate.stage, time_in_stage_ms=in_stage.total_seconds() * 1000)
                await self._release(candidate)
                self._stats.aged_out += 1
                removed += 1
        return removed

    async def run(self) -> None:
        """Start the pipeline and run until interrupted."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()

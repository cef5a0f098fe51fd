"""Stage evaluator - runs the checks for a candidate's current stage.

Each call to ``StageEvaluator.evaluate`` runs the policy for exactly one
stage, applies the outcome to the candidate, and returns a
``StageTransitionResult`` telling the caller whether to advance, retry
later, or drop the token.

Stage policies:
    PRE_BOND        metadata heuristics, creator blacklist and behavior,
                    dead hours, pre-bond score
    BONDED_ON_PUMP  pool wait timeout, trade velocity, creator behavior,
                    pool detection
    RAYDIUM_LISTED  route and liquidity, mint/freeze authorities,
                    pluggable extra checks
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol, TypeVar

from pump_stage_guard.checks.authorities import AuthorityChecker
from pump_stage_guard.checks.creator import CreatorBehaviorAnalyzer
from pump_stage_guard.checks.models import LiquidityConfig
from pump_stage_guard.checks.route import RouteChecker
from pump_stage_guard.checks.scoring import TokenScorer
from pump_stage_guard.checks.velocity import NO_ACTIVITY, VelocityTracker
from pump_stage_guard.lifecycle.models import (
    Candidate,
    CandidateDroppedError,
    EvaluationInProgressError,
    FailureReason,
    StageTransitionResult,
    TokenMetadata,
    TokenStage,
)
from pump_stage_guard.storage.blacklist import CreatorBlacklist
from pump_stage_guard.storage.cache import Clock, utc_now
from pump_stage_guard.telemetry import CheckRecorder, record_check_outcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_BACKOFF_MS = (2000, 3000, 5000, 8000, 13000)
DEFAULT_COLLABORATOR_TIMEOUT_SECONDS = 1.8
DEFAULT_SCAM_WORDS = ("test", "fake", "scam", "rug")
WAITING_FOR_POOL = "waiting_for_pool"
STALE_RESULT = "stale"


class MetadataProvider(Protocol):
    async def get_metadata(self, mint: str) -> TokenMetadata | None: ...


class ListedCheck(Protocol):
    """Additional check run once a token is listed on the AMM."""

    name: str
    failure_reason: FailureReason

    async def run(self, candidate: Candidate) -> bool: ...


@dataclass(frozen=True)
class PreBondConfig:
    min_name_length: int = 3
    max_name_length: int = 50
    min_symbol_length: int = 1
    max_symbol_length: int = 10
    scam_words: tuple[str, ...] = DEFAULT_SCAM_WORDS
    require_image: bool = True
    require_socials: bool = False
    min_social_links: int = 1
    check_creator_history: bool = True
    min_creator_age: timedelta = timedelta(minutes=30)
    auto_blacklist_risk: float = 0.7
    skip_dead_hours: bool = True
    dead_hours_start: int = 2
    dead_hours_end: int = 8
    min_prebond_score: float = 4.0


@dataclass(frozen=True)
class BondedConfig:
    max_wait: timedelta = timedelta(minutes=5)
    track_unique_wallets: bool = True
    min_unique_wallets: int = 3
    min_observation: timedelta = timedelta(minutes=1)
    creator_behavior_check: bool = True


@dataclass(frozen=True)
class ListedConfig:
    liquidity: LiquidityConfig = field(default_factory=LiquidityConfig)
    route_wallet: str | None = None
    check_authorities: bool = True


@dataclass(frozen=True)
class EvaluatorConfig:
    pre_bond: PreBondConfig = field(default_factory=PreBondConfig)
    bonded: BondedConfig = field(default_factory=BondedConfig)
    listed: ListedConfig = field(default_factory=ListedConfig)
    retry_backoff_ms: tuple[int, ...] = DEFAULT_RETRY_BACKOFF_MS
    collaborator_timeout_seconds: float = DEFAULT_COLLABORATOR_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if not self.retry_backoff_ms:
            raise ValueError("retry_backoff_ms must not be empty")

    def backoff_for(self, count: int) -> int:
        """Delay before the ``count``-th retry; the last entry repeats."""
        index = min(max(count, 1), len(self.retry_backoff_ms)) - 1
        return self.retry_backoff_ms[index]


@dataclass
class _StageOutcome:
    reasons: list[FailureReason] = field(default_factory=list)
    waiting: bool = False
    timed_out: bool = False
    pre_bond_score: float | None = None
    metadata: TokenMetadata | None = None
    has_route: bool | None = None
    liquidity: float | None = None
    price_impact: float | None = None


class StageEvaluator:
    """Evaluates candidates against the policy for their current stage.

    The evaluator holds no per-candidate state besides the set of mints
    currently in flight; a second concurrent evaluation of the same mint
    is refused. For a fixed candidate, clock and set of check outcomes the
    result is deterministic.

    Example:
        ```python
        evaluator = StageEvaluator(
            creator_analyzer=creators,
            velocity_tracker=velocity,
            route_checker=routes,
            authority_checker=authorities,
            token_scorer=TokenScorer(creators),
        )
        result = await evaluator.evaluate(candidate)
        if result.should_drop:
            ...
        ```
    """

    def __init__(
        self,
        *,
        creator_analyzer: CreatorBehaviorAnalyzer,
        velocity_tracker: VelocityTracker,
        route_checker: RouteChecker,
        authority_checker: AuthorityChecker,
        token_scorer: TokenScorer,
        blacklist: CreatorBlacklist | None = None,
        metadata_provider: MetadataProvider | None = None,
        listed_checks: Sequence[ListedCheck] = (),
        config: EvaluatorConfig | None = None,
        recorder: CheckRecorder | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._creators = creator_analyzer
        self._velocity = velocity_tracker
        self._routes = route_checker
        self._authorities = authority_checker
        self._scorer = token_scorer
        self._blacklist = blacklist
        self._metadata_provider = metadata_provider
        self._listed_checks = tuple(listed_checks)
        self._config = config or EvaluatorConfig()
        self._recorder = recorder
        self._clock = clock or utc_now

        self._in_flight: set[str] = set()

    @property
    def config(self) -> EvaluatorConfig:
        return self._config

    def is_in_flight(self, mint: str) -> bool:
        return mint in self._in_flight

    async def evaluate(self, candidate: Candidate) -> StageTransitionResult:
        """Run the current stage's checks and apply the outcome.

        Raises:
            CandidateDroppedError: If the candidate was already dropped.
            EvaluationInProgressError: If the mint is already being evaluated.
        """
        if candidate.is_dropped:
            raise CandidateDroppedError(f"{candidate.mint} was already dropped")
        if candidate.mint in self._in_flight:
            raise EvaluationInProgressError(f"{candidate.mint} is already being evaluated")

        self._in_flight.add(candidate.mint)
        try:
            return await self._evaluate(candidate)
        finally:
            self._in_flight.discard(candidate.mint)

    async def _evaluate(self, candidate: Candidate) -> StageTransitionResult:
        now = self._clock()
        if candidate.attempts >= candidate.max_attempts:
            return self._drop(candidate, [FailureReason.MAX_ATTEMPTS_EXCEEDED], now)

        generation = candidate.generation
        stage = candidate.stage

        if stage is TokenStage.PRE_BOND:
            outcome = await self._check_pre_bond(candidate, now)
        elif stage is TokenStage.BONDED_ON_PUMP:
            outcome = await self._check_bonded(candidate, now)
        else:
            outcome = await self._check_listed(candidate)

        if not candidate.active or candidate.generation != generation or candidate.stage is not stage:
            logger.debug("Discarding stale %s result for %s", stage.value, candidate.mint[:8])
            return StageTransitionResult(success=False, reason=STALE_RESULT, stale=True)

        return self._apply(candidate, stage, outcome, self._clock())

    def _apply(
        self,
        candidate: Candidate,
        stage: TokenStage,
        outcome: _StageOutcome,
        now: datetime,
    ) -> StageTransitionResult:
        candidate.last_checked_at = now
        if outcome.metadata is not None and candidate.metadata is None:
            candidate.metadata = outcome.metadata
        if outcome.pre_bond_score is not None:
            candidate.pre_bond_score = outcome.pre_bond_score
        if outcome.has_route is not None:
            candidate.has_route = outcome.has_route
            candidate.simulated_liquidity = outcome.liquidity
            candidate.price_impact = outcome.price_impact

        if outcome.timed_out:
            return self._drop(candidate, outcome.reasons, now)

        if outcome.reasons:
            candidate.attempts += 1
            if candidate.attempts >= candidate.max_attempts:
                return self._drop(candidate, outcome.reasons, now)
            candidate.record_failures(outcome.reasons)
            retry_after = self._config.backoff_for(candidate.attempts)
            logger.debug(
                "%s failed %s (attempt %d/%d): %s; retry in %dms",
                candidate.mint[:8],
                stage.value,
                candidate.attempts,
                candidate.max_attempts,
                _join(outcome.reasons),
                retry_after,
            )
            return StageTransitionResult(
                success=False,
                reason=_join(outcome.reasons),
                retry_after_ms=retry_after,
                reasons=tuple(outcome.reasons),
            )

        if outcome.waiting:
            candidate.poll_count += 1
            return StageTransitionResult(
                success=False,
                reason=WAITING_FOR_POOL,
                retry_after_ms=self._config.backoff_for(candidate.poll_count),
            )

        next_stage = stage.next_stage
        if next_stage is None:
            if candidate.ready_at is None:
                candidate.ready_at = now
                logger.info("%s passed all listed checks and is ready", candidate.mint[:8])
            return StageTransitionResult(success=True)

        candidate.advance_to(next_stage)
        candidate.stage_entered_at = now
        candidate.attempts = 0
        candidate.poll_count = 0
        if next_stage is TokenStage.BONDED_ON_PUMP:
            candidate.first_bonded_at = now
        logger.info("%s advanced %s -> %s", candidate.mint[:8], stage.value, next_stage.value)
        return StageTransitionResult(success=True, new_stage=next_stage)

    def _drop(self, candidate: Candidate, reasons: list[FailureReason], now: datetime) -> StageTransitionResult:
        candidate.record_failures(reasons)
        previous = candidate.stage
        candidate.advance_to(TokenStage.DROPPED)
        candidate.last_checked_at = now
        history = tuple(candidate.failure_reasons)
        summary = _join(reasons)
        logger.info(
            "Dropped %s at %s: %s (history: %s)",
            candidate.mint[:8],
            previous.value,
            summary,
            _join(history),
        )
        return StageTransitionResult(
            success=False,
            new_stage=TokenStage.DROPPED,
            reason=summary,
            should_drop=True,
            reasons=tuple(reasons),
            failure_history=history,
        )

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self._config.collaborator_timeout_seconds)

    async def _resolve_metadata(self, candidate: Candidate) -> TokenMetadata | None:
        if candidate.metadata is not None:
            return candidate.metadata
        if self._metadata_provider is None:
            return None
        return await self._bounded(self._metadata_provider.get_metadata(candidate.mint))

    async def _check_pre_bond(self, candidate: Candidate, now: datetime) -> _StageOutcome:
        cfg = self._config.pre_bond
        outcome = _StageOutcome()
        reasons = outcome.reasons

        try:
            metadata = await self._resolve_metadata(candidate)
        except Exception as e:
            logger.debug("Metadata lookup failed for %s: %r", candidate.mint[:8], e)
            metadata = None
            reasons.append(FailureReason.METADATA_UNAVAILABLE)
        else:
            if metadata is None and self._metadata_provider is not None:
                reasons.append(FailureReason.METADATA_UNAVAILABLE)
        outcome.metadata = metadata

        if metadata is not None:
            reasons.extend(self._metadata_failures(metadata, now))
        record_check_outcome(self._recorder, "prebond_metadata", not reasons)

        if cfg.check_creator_history:
            reasons.extend(await self._creator_failures(candidate))

        if cfg.skip_dead_hours and cfg.dead_hours_start <= now.hour <= cfg.dead_hours_end:
            reasons.append(FailureReason.DEAD_HOURS)

        score = await self._scorer.pre_bond_score(
            mint=candidate.mint,
            creator=candidate.creator,
            created_at=candidate.created_at,
        )
        scaled = 1.0 + score * 6.0
        outcome.pre_bond_score = scaled
        score_passed = scaled >= cfg.min_prebond_score
        if not score_passed:
            reasons.append(FailureReason.LOW_PREBOND_SCORE)
        record_check_outcome(self._recorder, "prebond_score", score_passed)
        return outcome

    def _metadata_failures(self, metadata: TokenMetadata, now: datetime) -> list[FailureReason]:
        cfg = self._config.pre_bond
        failures: list[FailureReason] = []

        name = metadata.name.strip()
        lowered = name.lower()
        if not cfg.min_name_length <= len(name) <= cfg.max_name_length or any(
            word in lowered for word in cfg.scam_words
        ):
            failures.append(FailureReason.INVALID_NAME)

        symbol = metadata.symbol.strip()
        if not cfg.min_symbol_length <= len(symbol) <= cfg.max_symbol_length:
            failures.append(FailureReason.INVALID_SYMBOL)

        if cfg.require_image and not metadata.has_image:
            failures.append(FailureReason.NO_IMAGE)

        if cfg.require_socials and metadata.social_link_count < cfg.min_social_links:
            failures.append(FailureReason.LOW_SOCIAL_SCORE)

        if (
            cfg.check_creator_history
            and metadata.creator_first_activity_at is not None
            and now - metadata.creator_first_activity_at < cfg.min_creator_age
        ):
            failures.append(FailureReason.CREATOR_TOO_NEW)

        return failures

    async def _creator_failures(self, candidate: Candidate) -> list[FailureReason]:
        cfg = self._config.pre_bond
        failures: list[FailureReason] = []

        if self._blacklist is not None:
            try:
                if await self._bounded(self._blacklist.is_blacklisted(candidate.creator)):
                    failures.append(FailureReason.CREATOR_BLACKLISTED)
            except Exception as e:
                logger.debug("Blacklist lookup failed for %s: %r", candidate.creator[:8], e)
                failures.append(FailureReason.CREATOR_CHECK_FAILED)

        if not await self._creators.record_and_score(candidate.creator, candidate.mint):
            failures.append(FailureReason.SUSPICIOUS_CREATOR)

        behavior = await self._creators.get(candidate.creator)
        if (
            behavior is not None
            and behavior.risk_score > cfg.auto_blacklist_risk
            and FailureReason.CREATOR_BLACKLISTED not in failures
        ):
            failures.append(FailureReason.CREATOR_BLACKLISTED)

        record_check_outcome(self._recorder, "prebond_creator", not failures)
        return failures

    async def _check_bonded(self, candidate: Candidate, now: datetime) -> _StageOutcome:
        cfg = self._config.bonded
        outcome = _StageOutcome()

        bonded_since = candidate.first_bonded_at or candidate.discovered_at
        if now - bonded_since > cfg.max_wait:
            logger.debug("%s waited %s for a pool", candidate.mint[:8], now - bonded_since)
            outcome.timed_out = True
            outcome.reasons.append(FailureReason.NO_POOL_TIMEOUT)
            return outcome

        velocity = await self._velocity.analyze(candidate.mint)
        if not velocity.is_healthy:
            if NO_ACTIVITY in velocity.warnings:
                outcome.reasons.append(FailureReason.LOW_VELOCITY)
            if any(w != NO_ACTIVITY for w in velocity.warnings):
                outcome.reasons.append(FailureReason.SUSPICIOUS_VELOCITY)
        if (
            cfg.track_unique_wallets
            and velocity.first_seen is not None
            and velocity.metrics.unique_wallets < cfg.min_unique_wallets
            and now - velocity.first_seen > cfg.min_observation
            and FailureReason.LOW_VELOCITY not in outcome.reasons
        ):
            outcome.reasons.append(FailureReason.LOW_VELOCITY)

        if cfg.creator_behavior_check and not await self._creators.record_and_score(
            candidate.creator, candidate.mint
        ):
            outcome.reasons.append(FailureReason.SUSPICIOUS_CREATOR)

        if outcome.reasons:
            return outcome

        if not await self._routes.has_pool(candidate.mint):
            outcome.waiting = True
        return outcome

    async def _check_listed(self, candidate: Candidate) -> _StageOutcome:
        cfg = self._config.listed
        outcome = _StageOutcome()

        if cfg.check_authorities:
            route, authorities = await asyncio.gather(
                self._routes.check_route(candidate.mint, cfg.liquidity, wallet=cfg.route_wallet),
                self._authorities.check_authorities(candidate.mint),
            )
            if not authorities.passed:
                outcome.reasons.append(FailureReason.DANGEROUS_AUTHORITIES)
        else:
            route = await self._routes.check_route(candidate.mint, cfg.liquidity, wallet=cfg.route_wallet)

        outcome.reasons[:0] = list(route.failures)
        outcome.has_route = route.has_route
        outcome.liquidity = route.liquidity
        outcome.price_impact = route.price_impact

        for check in self._listed_checks:
            try:
                passed = bool(await self._bounded(check.run(candidate)))
            except Exception as e:
                logger.debug("Listed check %s failed for %s: %r", check.name, candidate.mint[:8], e)
                passed = False
            record_check_outcome(self._recorder, check.name, passed)
            if not passed:
                outcome.reasons.append(check.failure_reason)

        return outcome


def _join(reasons: Sequence[FailureReason]) -> str:
    return ", ".join(r.value for r in reasons)

"""Data models for the token lifecycle.

This module defines the stage model, the failure taxonomy, the mutable
per-token candidate record, and the result returned by each evaluation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class StageGuardError(Exception):
    """Base exception for stage evaluation errors."""


class StageRegressionError(StageGuardError):
    """Raised when a candidate would move to an earlier lifecycle stage."""


class EvaluationInProgressError(StageGuardError):
    """Raised when a candidate is already being evaluated."""


class CandidateDroppedError(StageGuardError):
    """Raised when evaluating a candidate that was already dropped."""


class TokenStage(str, Enum):
    """Lifecycle stages, in the only order a token may traverse them.

    DROPPED is terminal and ordered after every live stage, so the
    "stage never decreases" rule also covers rejection.
    """

    PRE_BOND = "pre_bond"
    BONDED_ON_PUMP = "bonded_on_pump"
    RAYDIUM_LISTED = "raydium_listed"
    DROPPED = "dropped"

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]

    @property
    def next_stage(self) -> TokenStage | None:
        """The stage reached by a successful evaluation, if any."""
        if self is TokenStage.PRE_BOND:
            return TokenStage.BONDED_ON_PUMP
        if self is TokenStage.BONDED_ON_PUMP:
            return TokenStage.RAYDIUM_LISTED
        return None

    @property
    def is_terminal(self) -> bool:
        return self is TokenStage.DROPPED


_STAGE_ORDER = {
    TokenStage.PRE_BOND: 0,
    TokenStage.BONDED_ON_PUMP: 1,
    TokenStage.RAYDIUM_LISTED: 2,
    TokenStage.DROPPED: 3,
}


class FailureReason(str, Enum):
    """Closed set of reasons a stage check can fail."""

    # Pre-bond
    INVALID_NAME = "invalid_name"
    INVALID_SYMBOL = "invalid_symbol"
    NO_IMAGE = "no_image"
    METADATA_UNAVAILABLE = "metadata_unavailable"
    CREATOR_TOO_NEW = "creator_too_new"
    CREATOR_BLACKLISTED = "creator_blacklisted"
    CREATOR_CHECK_FAILED = "creator_check_failed"
    DEAD_HOURS = "dead_hours"
    LOW_PREBOND_SCORE = "low_prebond_score"
    LOW_SOCIAL_SCORE = "low_social_score"

    # Bonded on the launch venue
    NO_POOL_TIMEOUT = "no_pool_timeout"
    LOW_VELOCITY = "low_velocity"
    SUSPICIOUS_VELOCITY = "suspicious_velocity"
    SUSPICIOUS_CREATOR = "suspicious_creator"

    # Listed on the AMM
    NO_ROUTE = "no_route"
    LOW_LIQUIDITY = "low_liquidity"
    HIGH_LIQUIDITY = "high_liquidity"
    ROUTE_CHECK_FAILED = "route_check_failed"
    DANGEROUS_AUTHORITIES = "dangerous_authorities"
    HONEYPOT = "honeypot"
    NO_LP_LOCK = "no_lp_lock"
    BAD_HOLDER_DISTRIBUTION = "bad_holder_distribution"
    HIGH_SLIPPAGE = "high_slippage"

    # Bookkeeping and infrastructure
    MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"
    RPC_ERROR = "rpc_error"
    TIMEOUT = "timeout"
    UNKNOWN_ERROR = "unknown_error"


class RiskLevel(str, Enum):
    """Coarse risk classification shared by the individual checks."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class TokenMetadata:
    """Descriptive token metadata as reported at launch."""

    name: str
    symbol: str
    image_uri: str | None = None
    description: str | None = None
    twitter: str | None = None
    telegram: str | None = None
    website: str | None = None
    creator_first_activity_at: datetime | None = None

    @property
    def has_image(self) -> bool:
        return bool(self.image_uri and self.image_uri.strip())

    @property
    def social_link_count(self) -> int:
        return sum(1 for link in (self.twitter, self.telegram, self.website) if link and link.strip())


@dataclass(frozen=True)
class DiscoveryEvent:
    """A newly observed token, as delivered by the ingestion layer."""

    mint: str
    creator: str
    timestamp: datetime
    pool: str | None = None
    metadata: TokenMetadata | None = None
    source: str = "unknown"

    def __post_init__(self) -> None:
        if self.timestamp.tzinfo is None:
            raise ValueError("timestamp must be timezone-aware")


@dataclass
class Candidate:
    """Mutable per-token state owned by the evaluator.

    Stage-scoped scratch fields stay ``None`` until the stage that
    produces them has run. ``failure_reasons`` is append-only.
    """

    mint: str
    creator: str
    created_at: datetime
    discovered_at: datetime
    pool: str | None = None
    metadata: TokenMetadata | None = None
    stage: TokenStage = TokenStage.PRE_BOND

    # Stage-scoped scratch
    stage_entered_at: datetime | None = None
    pre_bond_score: float | None = None
    first_bonded_at: datetime | None = None
    last_checked_at: datetime | None = None
    has_route: bool | None = None
    simulated_liquidity: float | None = None
    price_impact: float | None = None
    ready_at: datetime | None = None

    # Retry bookkeeping
    attempts: int = 0
    max_attempts: int = 5
    retry_window_ms: int = 10 * 60 * 1000
    poll_count: int = 0
    next_check_at: datetime | None = None

    # Failure history
    last_failure_reason: FailureReason | None = None
    failure_reasons: list[FailureReason] = field(default_factory=list)

    # Bumped whenever the owner replaces or retires the record.
    generation: int = 0
    active: bool = True

    @classmethod
    def from_discovery(
        cls,
        event: DiscoveryEvent,
        *,
        discovered_at: datetime,
        max_attempts: int = 5,
        retry_window_ms: int = 10 * 60 * 1000,
    ) -> Candidate:
        return cls(
            mint=event.mint,
            creator=event.creator,
            pool=event.pool,
            metadata=event.metadata,
            created_at=event.timestamp,
            discovered_at=discovered_at,
            stage_entered_at=discovered_at,
            max_attempts=max_attempts,
            retry_window_ms=retry_window_ms,
        )

    @property
    def is_dropped(self) -> bool:
        return self.stage is TokenStage.DROPPED

    @property
    def is_ready(self) -> bool:
        return self.ready_at is not None and not self.is_dropped

    def advance_to(self, stage: TokenStage) -> None:
        """Move to ``stage``, refusing any backwards transition."""
        if stage.order < self.stage.order:
            raise StageRegressionError(
                f"{self.mint}: cannot move from {self.stage.value} back to {stage.value}"
            )
        self.stage = stage

    def record_failures(self, reasons: list[FailureReason]) -> None:
        if not reasons:
            return
        self.failure_reasons.extend(reasons)
        self.last_failure_reason = reasons[0]

    def retire(self) -> None:
        """Mark the record as no longer owned; in-flight results become stale."""
        self.active = False
        self.generation += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "mint": self.mint,
            "creator": self.creator,
            "stage": self.stage.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "pre_bond_score": self.pre_bond_score,
            "has_route": self.has_route,
            "simulated_liquidity": self.simulated_liquidity,
            "price_impact": self.price_impact,
            "last_failure_reason": self.last_failure_reason.value if self.last_failure_reason else None,
            "failure_reasons": [r.value for r in self.failure_reasons],
            "discovered_at": self.discovered_at.isoformat(),
            "first_bonded_at": self.first_bonded_at.isoformat() if self.first_bonded_at else None,
            "ready_at": self.ready_at.isoformat() if self.ready_at else None,
        }


@dataclass(frozen=True)
class StageTransitionResult:
    """Outcome of a single evaluation.

    Attributes:
        success: True when every check for the current stage passed.
        new_stage: Stage the candidate moved to, if it moved.
        reason: Human readable summary of the failure or wait.
        should_drop: True when the candidate was rejected permanently.
        retry_after_ms: Delay before the next evaluation, for retries.
        reasons: Failure reasons produced by this evaluation.
        failure_history: Full failure history, populated on drops.
        stale: True when the result was discarded because the candidate
            changed while the checks were running.
    """

    success: bool
    new_stage: TokenStage | None = None
    reason: str | None = None
    should_drop: bool = False
    retry_after_ms: int | None = None
    reasons: tuple[FailureReason, ...] = ()
    failure_history: tuple[FailureReason, ...] = ()
    stale: bool = False

    @property
    def is_waiting(self) -> bool:
        return not self.success and not self.should_drop and not self.reasons and not self.stale

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "new_stage": self.new_stage.value if self.new_stage else None,
            "reason": self.reason,
            "should_drop": self.should_drop,
            "retry_after_ms": self.retry_after_ms,
            "reasons": [r.value for r in self.reasons],
            "failure_history": [r.value for r in self.failure_history],
            "stale": self.stale,
        }

"""Data models produced and consumed by the stage checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pump_stage_guard.lifecycle.models import FailureReason, RiskLevel

LAMPORTS_PER_SOL = 1_000_000_000
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"


@dataclass(frozen=True)
class LiquidityConfig:
    """Liquidity bounds in SOL for the route check."""

    min_liquidity: float = 10.0
    max_liquidity: float | None = None

    def __post_init__(self) -> None:
        if self.min_liquidity < 0:
            raise ValueError("min_liquidity must be >= 0")
        if self.max_liquidity is not None and self.max_liquidity < self.min_liquidity:
            raise ValueError("max_liquidity must be >= min_liquidity")


@dataclass(frozen=True)
class RouteQuote:
    """A swap quote from the routing service.

    Amounts are in base units of the respective mints. ``price_impact``
    is a fraction (0.01 == 1%).
    """

    in_amount: int
    out_amount: int
    price_impact: float
    route_hops: int = 1

    @property
    def liquidity_sol(self) -> float:
        """Estimated reference-side pool depth in SOL.

        For a constant-product pool a probe of ``dx`` with impact ``p``
        implies a reserve of roughly ``dx * (1 - p) / p``. Without a usable
        impact the smaller leg of the quote is used instead.
        """
        probe_sol = self.in_amount / LAMPORTS_PER_SOL
        if 0 < self.price_impact < 1:
            return probe_sol * (1 - self.price_impact) / self.price_impact
        return min(self.in_amount, self.out_amount) / LAMPORTS_PER_SOL


@dataclass(frozen=True)
class RouteCheckResult:
    has_route: bool
    risk_level: RiskLevel
    liquidity: float | None = None
    price_impact: float | None = None
    failures: tuple[FailureReason, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_route": self.has_route,
            "liquidity": self.liquidity,
            "price_impact": self.price_impact,
            "risk_level": self.risk_level.value,
            "failures": [f.value for f in self.failures],
        }


@dataclass(frozen=True)
class MintAuthorityInfo:
    """Authority fields of a token mint account; ``None`` means revoked."""

    mint_authority: str | None
    freeze_authority: str | None


@dataclass(frozen=True)
class AuthoritiesCheckResult:
    has_mint_authority: bool
    has_freeze_authority: bool
    risk_level: RiskLevel
    mint_authority: str | None = None
    freeze_authority: str | None = None

    @property
    def passed(self) -> bool:
        return self.risk_level is RiskLevel.LOW


@dataclass
class CreatorBehavior:
    first_seen: datetime
    last_activity: datetime
    token_count: int = 0
    suspicious_patterns: set[str] = field(default_factory=set)
    risk_score: float = 0.0

    def copy(self) -> CreatorBehavior:
        return CreatorBehavior(
            first_seen=self.first_seen,
            last_activity=self.last_activity,
            token_count=self.token_count,
            suspicious_patterns=set(self.suspicious_patterns),
            risk_score=self.risk_score,
        )


@dataclass(frozen=True)
class CreatorCacheStats:
    size: int
    oldest_entry: datetime | None
    average_risk: float


@dataclass(frozen=True)
class BuyEvent:
    timestamp: datetime
    wallet: str
    amount: float


@dataclass
class VelocityData:
    first_seen: datetime
    buy_events: list[BuyEvent] = field(default_factory=list)
    unique_wallets: set[str] = field(default_factory=set)
    total_volume: float = 0.0


@dataclass(frozen=True)
class VelocityMetrics:
    events_per_minute: float
    unique_wallet_ratio: float
    average_amount: float
    total_volume: float
    event_count: int = 0
    unique_wallets: int = 0


@dataclass(frozen=True)
class VelocityAnalysis:
    is_healthy: bool
    metrics: VelocityMetrics
    warnings: tuple[str, ...] = ()
    first_seen: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_healthy": self.is_healthy,
            "warnings": list(self.warnings),
            "events_per_minute": self.metrics.events_per_minute,
            "unique_wallet_ratio": self.metrics.unique_wallet_ratio,
            "average_amount": self.metrics.average_amount,
            "total_volume": self.metrics.total_volume,
            "event_count": self.metrics.event_count,
            "unique_wallets": self.metrics.unique_wallets,
        }


@dataclass(frozen=True)
class VelocityCacheStats:
    size: int
    total_events: int
    oldest_entry: datetime | None


@dataclass(frozen=True)
class PreBondScore:
    """Pre-bond score and its weighted components, all in [0, 1]."""

    name_quality: float
    creator_quality: float
    timing: float
    market_conditions: float
    total: float

    @property
    def scaled(self) -> float:
        """The score on the legacy 1-7 scale."""
        return 1.0 + self.total * 6.0

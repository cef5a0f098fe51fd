"""Stage checks - creator, velocity, route, authority and scoring heuristics."""

from pump_stage_guard.checks.authorities import AuthorityChecker, LedgerReader
from pump_stage_guard.checks.creator import CreatorBehaviorAnalyzer
from pump_stage_guard.checks.models import (
    AuthoritiesCheckResult,
    LiquidityConfig,
    MintAuthorityInfo,
    RouteCheckResult,
    RouteQuote,
    VelocityAnalysis,
)
from pump_stage_guard.checks.route import RouteChecker, RoutingClient
from pump_stage_guard.checks.scoring import TokenScorer
from pump_stage_guard.checks.velocity import VelocityThresholds, VelocityTracker

__all__ = [
    "AuthoritiesCheckResult",
    "AuthorityChecker",
    "CreatorBehaviorAnalyzer",
    "LedgerReader",
    "LiquidityConfig",
    "MintAuthorityInfo",
    "RouteCheckResult",
    "RouteChecker",
    "RouteQuote",
    "RoutingClient",
    "TokenScorer",
    "VelocityAnalysis",
    "VelocityThresholds",
    "VelocityTracker",
]

"""Token lifecycle - stage model, failure taxonomy and candidate state."""

from pump_stage_guard.lifecycle.models import (
    Candidate,
    DiscoveryEvent,
    FailureReason,
    RiskLevel,
    StageGuardError,
    StageRegressionError,
    StageTransitionResult,
    TokenMetadata,
    TokenStage,
)

__all__ = [
    "Candidate",
    "DiscoveryEvent",
    "FailureReason",
    "RiskLevel",
    "StageGuardError",
    "StageRegressionError",
    "StageTransitionResult",
    "TokenMetadata",
    "TokenStage",
]

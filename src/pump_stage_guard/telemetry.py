"""Check-outcome recording and per-stage metrics.

Checks report pass/fail outcomes through the ``CheckRecorder`` protocol.
Recording is best effort: a failing sink never changes a check's result.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from pump_stage_guard.lifecycle.models import FailureReason, TokenStage

logger = logging.getLogger(__name__)


class CheckOutcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class CheckRecorder(Protocol):
    """Sink for individual check outcomes."""

    def record_check_outcome(self, check_name: str, outcome: CheckOutcome) -> None: ...


def record_check_outcome(recorder: CheckRecorder | None, check_name: str, passed: bool) -> None:
    """Forward an outcome to ``recorder``, swallowing sink failures."""
    if recorder is None:
        return
    outcome = CheckOutcome.PASS if passed else CheckOutcome.FAIL
    try:
        recorder.record_check_outcome(check_name, outcome)
    except Exception as e:
        logger.debug("Check recorder failed for %s: %s", check_name, e)


@dataclass
class StageMetrics:
    """In-memory counters for stage traffic and check outcomes.

    Implements ``CheckRecorder`` so a single instance can be shared by the
    checks and the pipeline.
    """

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    stage_entries: Counter[str] = field(default_factory=Counter)
    stage_exits: Counter[str] = field(default_factory=Counter)
    time_in_stage_ms: dict[str, list[float]] = field(default_factory=dict)
    failure_counts: Counter[str] = field(default_factory=Counter)
    drops_by_stage: Counter[str] = field(default_factory=Counter)
    check_passes: Counter[str] = field(default_factory=Counter)
    check_failures: Counter[str] = field(default_factory=Counter)
    ready_tokens: int = 0

    def record_check_outcome(self, check_name: str, outcome: CheckOutcome) -> None:
        if outcome is CheckOutcome.PASS:
            self.check_passes[check_name] += 1
        else:
            self.check_failures[check_name] += 1

    def record_stage_entry(self, stage: TokenStage) -> None:
        self.stage_entries[stage.value] += 1

    def record_stage_exit(self, stage: TokenStage, *, time_in_stage_ms: float) -> None:
        self.stage_exits[stage.value] += 1
        self.time_in_stage_ms.setdefault(stage.value, []).append(max(0.0, time_in_stage_ms))

    def record_failures(self, reasons: tuple[FailureReason, ...] | list[FailureReason]) -> None:
        for reason in reasons:
            self.failure_counts[reason.value] += 1

    def record_drop(self, stage: TokenStage) -> None:
        self.drops_by_stage[stage.value] += 1

    def record_ready(self) -> None:
        self.ready_tokens += 1

    def average_time_in_stage_ms(self, stage: TokenStage) -> float | None:
        samples = self.time_in_stage_ms.get(stage.value)
        if not samples:
            return None
        return sum(samples) / len(samples)

    def summary(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "stage_entries": dict(self.stage_entries),
            "stage_exits": dict(self.stage_exits),
            "avg_time_in_stage_ms": {
                stage.value: self.average_time_in_stage_ms(stage)
                for stage in TokenStage
                if stage.value in self.time_in_stage_ms
            },
            "failures": dict(self.failure_counts.most_common()),
            "drops_by_stage": dict(self.drops_by_stage),
            "check_passes": dict(self.check_passes),
            "check_failures": dict(self.check_failures),
            "ready_tokens": self.ready_tokens,
        }

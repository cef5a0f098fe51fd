"""Mint and freeze authority check."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from pump_stage_guard.checks.models import AuthoritiesCheckResult, MintAuthorityInfo
from pump_stage_guard.lifecycle.models import RiskLevel
from pump_stage_guard.telemetry import CheckRecorder, record_check_outcome

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 1.8

# Returned whenever the mint account cannot be read or parsed.
UNKNOWN_AUTHORITIES = AuthoritiesCheckResult(
    has_mint_authority=True,
    has_freeze_authority=True,
    risk_level=RiskLevel.HIGH,
)


class LedgerReader(Protocol):
    async def get_parsed_mint_info(self, mint: str) -> MintAuthorityInfo: ...


def classify_authorities(info: MintAuthorityInfo) -> AuthoritiesCheckResult:
    has_mint = info.mint_authority is not None
    has_freeze = info.freeze_authority is not None
    if has_mint and has_freeze:
        level = RiskLevel.HIGH
    elif has_mint or has_freeze:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW
    return AuthoritiesCheckResult(
        has_mint_authority=has_mint,
        has_freeze_authority=has_freeze,
        risk_level=level,
        mint_authority=info.mint_authority,
        freeze_authority=info.freeze_authority,
    )


class AuthorityChecker:
    """Reports whether a mint can still be inflated or frozen."""

    def __init__(
        self,
        ledger: LedgerReader,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        recorder: CheckRecorder | None = None,
    ) -> None:
        self._ledger = ledger
        self._timeout = timeout_seconds
        self._recorder = recorder

    async def check_authorities(self, mint: str) -> AuthoritiesCheckResult:
        try:
            info = await asyncio.wait_for(self._ledger.get_parsed_mint_info(mint), timeout=self._timeout)
            result = classify_authorities(info)
        except Exception as e:
            logger.debug("Authority check failed for %s: %r", mint[:8], e)
            result = UNKNOWN_AUTHORITIES
        record_check_outcome(self._recorder, "authorities", result.passed)
        return result

"""Route existence and liquidity check against the routing service."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from pump_stage_guard.checks.models import (
    LAMPORTS_PER_SOL,
    WRAPPED_SOL_MINT,
    LiquidityConfig,
    RouteCheckResult,
    RouteQuote,
)
from pump_stage_guard.lifecycle.models import FailureReason, RiskLevel
from pump_stage_guard.telemetry import CheckRecorder, record_check_outcome

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 1.8
DEFAULT_PROBE_AMOUNT_SOL = 1.0


class RoutingClient(Protocol):
    """Swap routing service.

    A token the service has not indexed yet is reported as ``False`` /
    ``None``; errors are raised.
    """

    async def has_route(self, input_mint: str, output_mint: str) -> bool: ...

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        *,
        wallet: str | None = None,
    ) -> RouteQuote | None: ...


class RouteChecker:
    """Checks that a token is routable from SOL and has sane liquidity.

    Args:
        client: Routing service adapter.
        reference_mint: Asset routes are checked from.
        probe_amount_sol: Size of the liquidity probe quote.
        timeout_seconds: Upper bound for each routing call.
        recorder: Optional check-outcome sink.
    """

    def __init__(
        self,
        client: RoutingClient,
        *,
        reference_mint: str = WRAPPED_SOL_MINT,
        probe_amount_sol: float = DEFAULT_PROBE_AMOUNT_SOL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        recorder: CheckRecorder | None = None,
    ) -> None:
        if probe_amount_sol <= 0:
            raise ValueError("probe_amount_sol must be > 0")
        self._client = client
        self._reference_mint = reference_mint
        self._probe_lamports = int(probe_amount_sol * LAMPORTS_PER_SOL)
        self._timeout = timeout_seconds
        self._recorder = recorder

    async def has_pool(self, mint: str) -> bool:
        """Whether the routing service can route to ``mint`` at all.

        Errors and timeouts read as "no pool yet".
        """
        try:
            return bool(
                await asyncio.wait_for(
                    self._client.has_route(self._reference_mint, mint),
                    timeout=self._timeout,
                )
            )
        except Exception as e:
            logger.debug("Pool detection failed for %s: %r", mint[:8], e)
            return False

    async def check_route(
        self,
        mint: str,
        config: LiquidityConfig | None = None,
        wallet: str | None = None,
    ) -> RouteCheckResult:
        config = config or LiquidityConfig()
        try:
            result = await self._check(mint, config, wallet)
        except Exception as e:
            logger.debug("Route check failed for %s: %r", mint[:8], e)
            result = RouteCheckResult(
                has_route=False,
                risk_level=RiskLevel.HIGH,
                failures=(FailureReason.ROUTE_CHECK_FAILED,),
            )
        record_check_outcome(self._recorder, "route", result.passed)
        return result

    async def _check(self, mint: str, config: LiquidityConfig, wallet: str | None) -> RouteCheckResult:
        has_route = await asyncio.wait_for(
            self._client.has_route(self._reference_mint, mint),
            timeout=self._timeout,
        )
        if not has_route:
            return RouteCheckResult(
                has_route=False,
                risk_level=RiskLevel.HIGH,
                failures=(FailureReason.NO_ROUTE,),
            )

        if wallet is None:
            return RouteCheckResult(has_route=True, risk_level=RiskLevel.LOW)

        quote = await asyncio.wait_for(
            self._client.quote(self._reference_mint, mint, self._probe_lamports, wallet=wallet),
            timeout=self._timeout,
        )
        if quote is None:
            return RouteCheckResult(
                has_route=True,
                risk_level=RiskLevel.HIGH,
                failures=(FailureReason.LOW_LIQUIDITY,),
            )

        liquidity = quote.liquidity_sol
        if liquidity < config.min_liquidity:
            return RouteCheckResult(
                has_route=True,
                liquidity=liquidity,
                price_impact=quote.price_impact,
                risk_level=RiskLevel.HIGH,
                failures=(FailureReason.LOW_LIQUIDITY,),
            )
        if config.max_liquidity is not None and liquidity > config.max_liquidity:
            return RouteCheckResult(
                has_route=True,
                liquidity=liquidity,
                price_impact=quote.price_impact,
                risk_level=RiskLevel.MEDIUM,
                failures=(FailureReason.HIGH_LIQUIDITY,),
            )
        return RouteCheckResult(
            has_route=True,
            liquidity=liquidity,
            price_impact=quote.price_impact,
            risk_level=RiskLevel.LOW,
        )

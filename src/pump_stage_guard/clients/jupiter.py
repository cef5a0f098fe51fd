"""Jupiter swap-routing adapter.

Implements the ``RoutingClient`` protocol over Jupiter's HTTP quote API.
A token Jupiter has not indexed yet is answered with a 400/404 and a
"no route" error code; that case is reported as "no route", not raised.
"""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from pump_stage_guard.checks.models import LAMPORTS_PER_SOL, RouteQuote

logger = logging.getLogger(__name__)

DEFAULT_JUPITER_API_URL = "https://lite-api.jup.ag/swap/v1"
DEFAULT_SLIPPAGE_BPS = 100
DEFAULT_PROBE_AMOUNT_LAMPORTS = LAMPORTS_PER_SOL // 100  # 0.01 SOL
DEFAULT_REQUEST_TIMEOUT_SECONDS = 5.0

NO_ROUTE_ERROR_CODES = frozenset(
    {
        "COULD_NOT_FIND_ANY_ROUTE",
        "NO_ROUTES_FOUND",
        "TOKEN_NOT_TRADABLE",
        "ROUTE_PLAN_DOES_NOT_CONSUME_ALL_THE_AMOUNT",
    }
)


class RoutingClientError(Exception):
    """Raised when the routing service returns an unexpected response."""


def parse_quote(data: dict[str, Any]) -> RouteQuote | None:
    """Convert a Jupiter quote response into a ``RouteQuote``.

    Returns None when the response carries no route plan.

    Raises:
        RoutingClientError: If required fields are missing or malformed.
    """
    route_plan = data.get("routePlan") or []
    if not route_plan:
        return None
    try:
        in_amount = int(data["inAmount"])
        out_amount = int(data["outAmount"])
        price_impact = float(data.get("priceImpactPct") or 0.0)
    except (KeyError, TypeError, ValueError) as e:
        raise RoutingClientError(f"Malformed quote response: {e}") from e
    return RouteQuote(
        in_amount=in_amount,
        out_amount=out_amount,
        price_impact=abs(price_impact),
        route_hops=len(route_plan),
    )


class JupiterClient:
    """Async Jupiter quote client.

    Example:
        ```python
        client = JupiterClient()
        try:
            routable = await client.has_route(WRAPPED_SOL_MINT, mint)
        finally:
            await client.close()
        ```
    """

    def __init__(
        self,
        base_url: str = DEFAULT_JUPITER_API_URL,
        *,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        probe_amount_lamports: int = DEFAULT_PROBE_AMOUNT_LAMPORTS,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._slippage_bps = slippage_bps
        self._probe_amount = probe_amount_lamports
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get_quote(self, input_mint: str, output_mint: str, amount: int) -> dict[str, Any] | None:
        """Fetch a raw quote, or None if Jupiter knows no route."""
        session = await self._ensure_session()
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(self._slippage_bps),
        }
        async with session.get(f"{self._base_url}/quote", params=params) as resp:
            if resp.status == 200:
                data = await resp.json(content_type=None)
                if not isinstance(data, dict):
                    raise RoutingClientError("Quote response is not a JSON object")
                return data

            body = await resp.text()
            if resp.status in (400, 404) and any(code in body for code in NO_ROUTE_ERROR_CODES):
                logger.debug("No Jupiter route %s -> %s", input_mint[:8], output_mint[:8])
                return None
            raise RoutingClientError(f"Jupiter quote failed with HTTP {resp.status}: {body[:200]}")

    async def has_route(self, input_mint: str, output_mint: str) -> bool:
        data = await self.get_quote(input_mint, output_mint, self._probe_amount)
        return bool(data and data.get("routePlan"))

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        *,
        wallet: str | None = None,
    ) -> RouteQuote | None:
        # Quotes are wallet-independent; the wallet only gates whether the
        # caller probes liquidity at all.
        data = await self.get_quote(input_mint, output_mint, amount)
        if data is None:
            return None
        return parse_quote(data)

    async def __aenter__(self) -> JupiterClient:
        await self._ensure_session()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

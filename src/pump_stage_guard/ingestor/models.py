"""Data models for PumpPortal stream messages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from pump_stage_guard.lifecycle.models import DiscoveryEvent, TokenMetadata

TradeSide = Literal["buy", "sell"]


@dataclass(frozen=True)
class TradeEvent:
    """A single trade on a tracked token."""

    mint: str
    wallet: str
    side: TradeSide
    sol_amount: float
    timestamp: datetime
    signature: str = ""

    @property
    def is_buy(self) -> bool:
        return self.side == "buy"

    @classmethod
    def from_websocket_message(cls, data: dict[str, Any], *, received_at: datetime | None = None) -> TradeEvent:
        side = str(data.get("txType", "")).lower()
        if side not in ("buy", "sell"):
            raise ValueError(f"Not a trade message: txType={side!r}")
        mint = str(data.get("mint") or "")
        wallet = str(data.get("traderPublicKey") or "")
        if not mint or not wallet:
            raise ValueError("Trade message is missing mint or traderPublicKey")
        return cls(
            mint=mint,
            wallet=wallet,
            side=side,  # type: ignore[arg-type]
            sol_amount=float(data.get("solAmount") or 0.0),
            timestamp=received_at or datetime.now(UTC),
            signature=str(data.get("signature") or ""),
        )


def discovery_event_from_message(data: dict[str, Any], *, received_at: datetime | None = None) -> DiscoveryEvent:
    """Build a ``DiscoveryEvent`` from a PumpPortal ``create`` message."""
    if str(data.get("txType", "")).lower() != "create":
        raise ValueError(f"Not a create message: txType={data.get('txType')!r}")
    mint = str(data.get("mint") or "")
    creator = str(data.get("traderPublicKey") or "")
    if not mint or not creator:
        raise ValueError("Create message is missing mint or traderPublicKey")

    metadata = None
    if "name" in data or "symbol" in data:
        metadata = TokenMetadata(
            name=str(data.get("name") or ""),
            symbol=str(data.get("symbol") or ""),
            image_uri=data.get("image") or data.get("uri") or None,
            description=data.get("description") or None,
            twitter=data.get("twitter") or None,
            telegram=data.get("telegram") or None,
            website=data.get("website") or None,
        )

    return DiscoveryEvent(
        mint=mint,
        creator=creator,
        pool=data.get("bondingCurveKey") or None,
        timestamp=received_at or datetime.now(UTC),
        metadata=metadata,
        source="pumpportal",
    )

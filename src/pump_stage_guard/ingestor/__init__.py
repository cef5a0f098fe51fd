"""Ingestion layer - PumpPortal launch and trade stream."""

from pump_stage_guard.ingestor.models import TradeEvent, discovery_event_from_message
from pump_stage_guard.ingestor.pumpportal import (
    ConnectionState,
    PumpPortalStreamHandler,
    StreamStats,
)

__all__ = [
    "ConnectionState",
    "PumpPortalStreamHandler",
    "StreamStats",
    "TradeEvent",
    "discovery_event_from_message",
]

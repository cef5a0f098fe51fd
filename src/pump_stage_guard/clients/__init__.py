"""Collaborator adapters - routing service and ledger reads."""

from pump_stage_guard.clients.jupiter import JupiterClient, RoutingClientError
from pump_stage_guard.clients.ledger import (
    LedgerReadError,
    MalformedMintDataError,
    SolanaLedgerClient,
)

__all__ = [
    "JupiterClient",
    "LedgerReadError",
    "MalformedMintDataError",
    "RoutingClientError",
    "SolanaLedgerClient",
]

"""Solana ledger-read adapter for SPL mint accounts."""

from __future__ import annotations

import logging
import struct
from typing import Any

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.pubkey import Pubkey

from pump_stage_guard.checks.models import MintAuthorityInfo

logger = logging.getLogger(__name__)

DEFAULT_COMMITMENT = "confirmed"

# SPL Token mint layout (Token-2022 mints share the same 82-byte prefix).
MINT_ACCOUNT_SIZE = 82
_MINT_AUTHORITY_OPTION = slice(0, 4)
_MINT_AUTHORITY = slice(4, 36)
_FREEZE_AUTHORITY_OPTION = slice(46, 50)
_FREEZE_AUTHORITY = slice(50, 82)


class LedgerReadError(Exception):
    """Raised when an account cannot be fetched."""


class MalformedMintDataError(LedgerReadError):
    """Raised when account data is not a valid mint."""


def _optional_pubkey(data: bytes, option: slice, key: slice) -> str | None:
    (tag,) = struct.unpack("<I", data[option])
    if tag == 0:
        return None
    if tag != 1:
        raise MalformedMintDataError(f"Invalid COption tag {tag}")
    return str(Pubkey.from_bytes(data[key]))


def parse_mint_account(data: bytes) -> MintAuthorityInfo:
    """Decode the authority fields of a raw mint account."""
    if len(data) < MINT_ACCOUNT_SIZE:
        raise MalformedMintDataError(f"Mint account too short: {len(data)} bytes")
    return MintAuthorityInfo(
        mint_authority=_optional_pubkey(data, _MINT_AUTHORITY_OPTION, _MINT_AUTHORITY),
        freeze_authority=_optional_pubkey(data, _FREEZE_AUTHORITY_OPTION, _FREEZE_AUTHORITY),
    )


class SolanaLedgerClient:
    """Reads mint accounts over Solana JSON-RPC.

    Args:
        rpc_url: HTTP(S) RPC endpoint.
        commitment: Commitment level for reads.
        client: Optional preconfigured ``AsyncClient``.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = DEFAULT_COMMITMENT,
        client: AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._commitment = Commitment(commitment)
        self._client = client or AsyncClient(rpc_url, commitment=self._commitment)

    async def get_parsed_mint_info(self, mint: str) -> MintAuthorityInfo:
        try:
            pubkey = Pubkey.from_string(mint)
        except ValueError as e:
            raise MalformedMintDataError(f"Invalid mint address {mint!r}") from e

        try:
            resp = await self._client.get_account_info(pubkey, commitment=self._commitment, encoding="base64")
        except Exception as e:
            raise LedgerReadError(f"get_account_info failed for {mint}: {e}") from e

        account = resp.value
        if account is None:
            raise LedgerReadError(f"Mint account {mint} not found")
        return parse_mint_account(bytes(account.data))

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> SolanaLedgerClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

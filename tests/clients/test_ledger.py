"""Tests for the Solana ledger client."""

import struct
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.pubkey import Pubkey

from pump_stage_guard.clients.ledger import (
    LedgerReadError,
    MalformedMintDataError,
    SolanaLedgerClient,
    parse_mint_account,
)


def create_mint_data(*, mint_authority: Pubkey | None = None, freeze_authority: Pubkey | None = None) -> bytes:
    """Build an 82-byte SPL mint account."""

    def coption(key: Pubkey | None) -> bytes:
        if key is None:
            return struct.pack("<I", 0) + bytes(32)
        return struct.pack("<I", 1) + bytes(key)

    supply = struct.pack("<Q", 1_000_000_000)
    decimals_and_initialized = bytes([6, 1])
    return coption(mint_authority) + supply + decimals_and_initialized + coption(freeze_authority)


class TestParseMintAccount:
    """Tests for raw mint decoding."""

    def test_revoked_authorities(self):
        info = parse_mint_account(create_mint_data())

        assert info.mint_authority is None
        assert info.freeze_authority is None

    def test_present_authorities(self):
        mint_auth = Pubkey.new_unique()
        freeze_auth = Pubkey.new_unique()

        info = parse_mint_account(create_mint_data(mint_authority=mint_auth, freeze_authority=freeze_auth))

        assert info.mint_authority == str(mint_auth)
        assert info.freeze_authority == str(freeze_auth)

    def test_layout_size(self):
        assert len(create_mint_data()) == 82

    def test_too_short(self):
        with pytest.raises(MalformedMintDataError):
            parse_mint_account(bytes(40))

    def test_invalid_option_tag(self):
        data = bytearray(create_mint_data())
        data[0:4] = struct.pack("<I", 7)

        with pytest.raises(MalformedMintDataError):
            parse_mint_account(bytes(data))


class TestSolanaLedgerClient:
    """Tests for the RPC adapter."""

    @pytest.mark.asyncio
    async def test_reads_mint_account(self):
        mint = Pubkey.new_unique()
        freeze_auth = Pubkey.new_unique()
        rpc = AsyncMock()
        rpc.get_account_info.return_value = MagicMock(
            value=MagicMock(data=create_mint_data(freeze_authority=freeze_auth))
        )
        client = SolanaLedgerClient("https://rpc.example", client=rpc)

        info = await client.get_parsed_mint_info(str(mint))

        assert info.mint_authority is None
        assert info.freeze_authority == str(freeze_auth)
        assert rpc.get_account_info.await_args.args[0] == mint

    @pytest.mark.asyncio
    async def test_missing_account(self):
        rpc = AsyncMock()
        rpc.get_account_info.return_value = MagicMock(value=None)
        client = SolanaLedgerClient("https://rpc.example", client=rpc)

        with pytest.raises(LedgerReadError):
            await client.get_parsed_mint_info(str(Pubkey.new_unique()))

    @pytest.mark.asyncio
    async def test_rpc_error_wrapped(self):
        rpc = AsyncMock()
        rpc.get_account_info.side_effect = RuntimeError("429 Too Many Requests")
        client = SolanaLedgerClient("https://rpc.example", client=rpc)

        with pytest.raises(LedgerReadError):
            await client.get_parsed_mint_info(str(Pubkey.new_unique()))

    @pytest.mark.asyncio
    async def test_invalid_mint_address(self):
        client = SolanaLedgerClient("https://rpc.example", client=AsyncMock())

        with pytest.raises(MalformedMintDataError):
            await client.get_parsed_mint_info("not-a-pubkey")

    @pytest.mark.asyncio
    async def test_close(self):
        rpc = AsyncMock()
        async with SolanaLedgerClient("https://rpc.example", client=rpc):
            pass

        rpc.close.assert_awaited_once()

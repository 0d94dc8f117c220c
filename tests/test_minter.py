"""
Tests for the relayer minter against a mocked AsyncWeb3.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from hexbytes import HexBytes
from web3.exceptions import TimeExhausted

from factories import BENEFICIARY, MINT_AMOUNT, MINT_TX_HASH, TOKEN
from mintrelay_api.exceptions import MintOutcomeUnknownError, MintRevertedError, MintSubmissionError
from mintrelay_api.minter import DEFAULT_MINT_GAS_LIMIT, Minter

# Well-known development key (Hardhat/Anvil account #0)
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_RELAYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def make_minter(
    estimate=None,
    receipt=None,
    send_error=None,
    wait_error=None,
) -> tuple[Minter, MagicMock]:
    w3 = MagicMock()
    contract = w3.eth.contract.return_value
    mint_fn = contract.functions.mint.return_value

    if isinstance(estimate, Exception):
        mint_fn.estimate_gas = AsyncMock(side_effect=estimate)
    else:
        mint_fn.estimate_gas = AsyncMock(return_value=estimate if estimate is not None else 100_000)
    mint_fn.build_transaction = AsyncMock(return_value={"to": TOKEN, "data": "0x40c10f19"})

    w3.eth.get_transaction_count = AsyncMock(return_value=7)
    w3.eth.send_raw_transaction = AsyncMock(
        side_effect=send_error, return_value=HexBytes(MINT_TX_HASH)
    )
    w3.eth.wait_for_transaction_receipt = AsyncMock(
        side_effect=wait_error,
        return_value=receipt or {"status": 1, "blockNumber": 205, "gasUsed": 90_000},
    )

    minter = Minter(w3, token_address=TOKEN, private_key=TEST_PRIVATE_KEY, chain_id=8453)
    minter.account = MagicMock()
    minter.account.sign_transaction.return_value = SimpleNamespace(
        hash=HexBytes(MINT_TX_HASH), raw_transaction=b"\x02signed"
    )
    return minter, w3


class TestMinter:
    """Tests for Minter.mint."""

    def test_relayer_address_from_key(self):
        minter, _ = make_minter()
        assert minter.address == TEST_RELAYER

    @pytest.mark.asyncio
    async def test_successful_mint(self):
        minter, w3 = make_minter(estimate=100_000)
        outcome = await minter.mint(BENEFICIARY.lower(), MINT_AMOUNT)

        assert outcome.tx_hash == MINT_TX_HASH
        assert outcome.block_number == 205
        assert outcome.gas_used == 90_000
        assert outcome.gas_limit == 120_000

        contract = w3.eth.contract.return_value
        contract.functions.mint.assert_called_with(BENEFICIARY, MINT_AMOUNT)
        tx_params = contract.functions.mint.return_value.build_transaction.call_args.args[0]
        assert tx_params == {
            "from": TEST_RELAYER,
            "nonce": 7,
            "gas": 120_000,
            "chainId": 8453,
        }
        w3.eth.get_transaction_count.assert_awaited_with(TEST_RELAYER, "pending")
        w3.eth.send_raw_transaction.assert_awaited_once_with(b"\x02signed")

    @pytest.mark.asyncio
    async def test_estimate_failure_uses_default_gas_limit(self):
        minter, w3 = make_minter(estimate=ValueError("execution reverted"))
        outcome = await minter.mint(BENEFICIARY, MINT_AMOUNT)

        assert outcome.gas_limit == DEFAULT_MINT_GAS_LIMIT
        tx_params = w3.eth.contract.return_value.functions.mint.return_value.build_transaction.call_args.args[0]
        assert tx_params["gas"] == DEFAULT_MINT_GAS_LIMIT

    @pytest.mark.asyncio
    async def test_reverted_mint_is_failure(self):
        minter, _ = make_minter(receipt={"status": 0, "blockNumber": 206, "gasUsed": 50_000})
        with pytest.raises(MintRevertedError) as exc_info:
            await minter.mint(BENEFICIARY, MINT_AMOUNT)
        assert exc_info.value.tx_hash == MINT_TX_HASH
        assert exc_info.value.block_number == 206

    @pytest.mark.asyncio
    async def test_broadcast_rejection_is_submission_error(self):
        minter, w3 = make_minter(send_error=ValueError("insufficient funds for gas"))
        with pytest.raises(MintSubmissionError, match="insufficient funds"):
            await minter.mint(BENEFICIARY, MINT_AMOUNT)
        w3.eth.wait_for_transaction_receipt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirmation_timeout_is_unknown_outcome(self):
        minter, _ = make_minter(wait_error=TimeExhausted("not mined"))
        with pytest.raises(MintOutcomeUnknownError) as exc_info:
            await minter.mint(BENEFICIARY, MINT_AMOUNT)
        assert exc_info.value.tx_hash == MINT_TX_HASH

    @pytest.mark.asyncio
    async def test_broadcast_timeout_is_unknown_outcome(self):
        minter, _ = make_minter(send_error=asyncio.TimeoutError())
        with pytest.raises(MintOutcomeUnknownError) as exc_info:
            await minter.mint(BENEFICIARY, MINT_AMOUNT)
        assert exc_info.value.tx_hash == MINT_TX_HASH

    @pytest.mark.asyncio
    async def test_invalid_beneficiary(self):
        minter, w3 = make_minter()
        with pytest.raises(ValueError):
            await minter.mint("0x1234", MINT_AMOUNT)
        w3.eth.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_submissions_are_serialized(self):
        """Nonce fetch and broadcast of one mint never interleave with another."""
        minter, w3 = make_minter()
        events: list[str] = []

        async def get_nonce(address, block):
            events.append("nonce")
            await asyncio.sleep(0.01)
            return 7

        async def send(raw):
            events.append("send")
            await asyncio.sleep(0.01)
            return HexBytes(MINT_TX_HASH)

        w3.eth.get_transaction_count = AsyncMock(side_effect=get_nonce)
        w3.eth.send_raw_transaction = AsyncMock(side_effect=send)

        await asyncio.gather(
            minter.mint(BENEFICIARY, MINT_AMOUNT),
            minter.mint(BENEFICIARY, MINT_AMOUNT),
        )
        assert events == ["nonce", "send", "nonce", "send"]

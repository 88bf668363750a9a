"""Unit tests for EvmLedger."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3RPCError

from feedsettler.src.errors import (
    ConfirmationTimeoutError,
    SettlerError,
    TransactionRejectedError,
)
from feedsettler.src.EvmLedger import EvmLedger, format_scaled, job_hash_bytes

DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
FEED_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
JOB_HASH = "0x" + "ab" * 32


class Ready:
    """Awaitable fixed value, standing in for AsyncWeb3's awaitable properties."""

    def __init__(self, value) -> None:
        self.value = value

    def __await__(self):
        if False:
            yield
        return self.value


def make_ledger() -> tuple[EvmLedger, MagicMock, MagicMock]:
    """Ledger over a mocked AsyncWeb3 with a real signing account."""
    w3 = MagicMock()
    contract = MagicMock()
    w3.eth.contract.return_value = contract
    w3.eth.get_transaction_count = AsyncMock(return_value=5)
    w3.eth.chain_id = Ready(421614)
    w3.eth.send_raw_transaction = AsyncMock(return_value=b"\x01" * 32)
    contract.functions.getFee.return_value.call = AsyncMock(return_value=10)
    contract.functions.updateFeeds.return_value.build_transaction = AsyncMock(
        return_value={
            "to": FEED_ADDRESS,
            "value": 10,
            "nonce": 5,
            "chainId": 421614,
            "gas": 200000,
            "gasPrice": 10**9,
            "data": "0x1234",
        }
    )
    ledger = EvmLedger(
        w3, Account.from_key(DEV_KEY), abi=[], confirm_timeout=5.0, submit_retry_delay=0.0
    )
    return ledger, w3, contract


class TestHelpers:
    """Test value and hash helpers."""

    def test_format_scaled(self) -> None:
        """Fixed-point integers should format without trailing zeros."""
        assert format_scaled(45231670000000000000000) == "45231.67"
        assert format_scaled(10**19) == "10"
        assert format_scaled(-5 * 10**17) == "-0.5"
        assert format_scaled(0) == "0"

    def test_job_hash_bytes(self) -> None:
        """Job hashes should decode to 32 bytes."""
        assert job_hash_bytes(JOB_HASH) == b"\xab" * 32
        with pytest.raises(ValueError):
            job_hash_bytes("0x1234")


class TestEvmLedgerSubmit:
    """Test building, signing and submitting updates."""

    def test_submit_update(self) -> None:
        """A successful submission should return the signed transaction hash."""
        ledger, w3, contract = make_ledger()
        tx_hash = asyncio.run(ledger.submit_update(FEED_ADDRESS, [b"\x01"]))

        contract.functions.updateFeeds.assert_called_once_with([b"\x01"])
        contract.functions.updateFeeds.return_value.build_transaction.assert_awaited_once_with(
            {
                "from": ledger.address,
                "value": 10,
                "nonce": 5,
                "chainId": 421614,
            }
        )
        signed = ledger.account.sign_transaction(
            contract.functions.updateFeeds.return_value.build_transaction.return_value
        )
        assert tx_hash == Web3.to_hex(signed.hash)
        w3.eth.send_raw_transaction.assert_awaited_once_with(signed.raw_transaction)

    def test_retries_same_transaction(self) -> None:
        """Transient failures should resend the identical signed bytes."""
        ledger, w3, _ = make_ledger()
        w3.eth.send_raw_transaction.side_effect = [OSError("reset"), b"\x01" * 32]

        asyncio.run(ledger.submit_update(FEED_ADDRESS, [b"\x01"]))

        calls = w3.eth.send_raw_transaction.await_args_list
        assert len(calls) == 2
        assert calls[0] == calls[1]

    def test_gives_up_after_three_attempts(self) -> None:
        """Submission should be attempted at most three times."""
        ledger, w3, _ = make_ledger()
        w3.eth.send_raw_transaction.side_effect = OSError("down")

        with pytest.raises(SettlerError, match="after 3 attempts"):
            asyncio.run(ledger.submit_update(FEED_ADDRESS, [b"\x01"]))
        assert w3.eth.send_raw_transaction.await_count == 3

    def test_already_known_counts_as_sent(self) -> None:
        """A node that already has the transaction should not trigger a retry."""
        ledger, w3, _ = make_ledger()
        w3.eth.send_raw_transaction.side_effect = Web3RPCError("already known")

        tx_hash = asyncio.run(ledger.submit_update(FEED_ADDRESS, [b"\x01"]))
        assert tx_hash.startswith("0x")
        assert w3.eth.send_raw_transaction.await_count == 1

    def test_revert_on_build(self) -> None:
        """A reverting update should raise TransactionRejectedError."""
        ledger, w3, contract = make_ledger()
        contract.functions.getFee.return_value.call.side_effect = ContractLogicError(
            "execution reverted"
        )

        with pytest.raises(TransactionRejectedError):
            asyncio.run(ledger.submit_update(FEED_ADDRESS, [b"\x01"]))
        w3.eth.send_raw_transaction.assert_not_awaited()


class TestEvmLedgerConfirm:
    """Test confirmation handling."""

    def test_confirmed(self) -> None:
        """A status 1 receipt should confirm."""
        ledger, w3, _ = make_ledger()
        w3.eth.wait_for_transaction_receipt = AsyncMock(
            return_value={"status": 1, "blockNumber": 7}
        )
        asyncio.run(ledger.confirm("0xabc"))
        w3.eth.wait_for_transaction_receipt.assert_awaited_once_with("0xabc", timeout=5.0)

    def test_failed_on_chain(self) -> None:
        """A status 0 receipt should raise TransactionRejectedError."""
        ledger, w3, _ = make_ledger()
        w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 0})
        with pytest.raises(TransactionRejectedError):
            asyncio.run(ledger.confirm("0xabc"))

    def test_timeout(self) -> None:
        """A receipt timeout should raise ConfirmationTimeoutError."""
        ledger, w3, _ = make_ledger()
        w3.eth.wait_for_transaction_receipt = AsyncMock(side_effect=TimeExhausted("slow"))
        with pytest.raises(ConfirmationTimeoutError):
            asyncio.run(ledger.confirm("0xabc"))


class TestEvmLedgerReads:
    """Test contract reads."""

    def test_latest_value(self) -> None:
        """The stored result should be scaled to a decimal string."""
        ledger, _, contract = make_ledger()
        contract.functions.latestUpdate.return_value.call = AsyncMock(
            return_value=(45231670000000000000000, 1700000000)
        )
        assert asyncio.run(ledger.latest_value(FEED_ADDRESS, JOB_HASH)) == "45231.67"
        contract.functions.latestUpdate.assert_called_once_with(b"\xab" * 32)

    def test_latest_value_never_updated(self) -> None:
        """A zero timestamp should mean no value."""
        ledger, _, contract = make_ledger()
        contract.functions.latestUpdate.return_value.call = AsyncMock(return_value=(0, 0))
        assert asyncio.run(ledger.latest_value(FEED_ADDRESS, JOB_HASH)) is None

    def test_balance(self) -> None:
        """Balance should be reported in ether units."""
        ledger, w3, _ = make_ledger()
        w3.eth.get_balance = AsyncMock(return_value=15 * 10**17)
        assert asyncio.run(ledger.balance()) == Decimal("1.5")

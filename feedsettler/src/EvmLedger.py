"""EvmLedger: sign, submit and confirm feed update transactions."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import TYPE_CHECKING

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception, Web3RPCError

from .errors import ConfirmationTimeoutError, SettlerError, TransactionRejectedError

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount
    from web3.contract import AsyncContract

logger = logging.getLogger(__name__)

# Number of decimals used by the feed contract's stored results.
NUM_DECIMALS = 18

# Errors worth another submission attempt of the same signed transaction.
SUBMIT_ERRORS = (Web3Exception, aiohttp.ClientError, OSError, asyncio.TimeoutError)


def format_scaled(value: int, decimals: int = NUM_DECIMALS) -> str:
    """Format a fixed-point integer as a plain decimal string.

    .. code-block:: python

        >>> format_scaled(45231670000000000000000)
        '45231.67'
    """
    scaled = (Decimal(value) / (Decimal(10) ** decimals)).normalize()
    return format(scaled, "f")


def job_hash_bytes(job_hash: str) -> bytes:
    """Decode a 0x-prefixed 32-byte job hash.

    :raises ValueError: If the hash is not 32 bytes of hex.
    """
    raw = bytes.fromhex(job_hash.removeprefix("0x"))
    if len(raw) != 32:
        raise ValueError(f"Job hash must be 32 bytes, got {len(raw)}")
    return raw


class EvmLedger:
    """Writes signed oracle updates to feed contracts.

    :cvar MAX_SUBMIT_ATTEMPTS: Submission attempts per transaction.
    :ivar w3: AsyncWeb3 handle shared by the settler process.
    :ivar account: Settler signing account.
    :ivar abi: Feed contract ABI.
    :ivar confirm_timeout: Seconds to wait for a receipt.
    """

    MAX_SUBMIT_ATTEMPTS = 3

    def __init__(
        self,
        w3: AsyncWeb3,
        account: LocalAccount,
        abi: list,
        confirm_timeout: float = 60.0,
        submit_retry_delay: float = 1.0,
    ) -> None:
        """Initialize the ledger writer.

        :param w3: AsyncWeb3 handle.
        :param account: Settler signing account.
        :param abi: Feed contract ABI.
        :param confirm_timeout: Seconds to wait for confirmation (default: 60).
        :param submit_retry_delay: Seconds between submission attempts.
        """
        self.w3 = w3
        self.account = account
        self.abi = abi
        self.confirm_timeout = confirm_timeout
        self.submit_retry_delay = submit_retry_delay

    @property
    def address(self) -> str:
        return self.account.address

    def _contract(self, feed_address: str) -> AsyncContract:
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(feed_address), abi=self.abi
        )

    async def balance(self) -> Decimal:
        """Settler balance in ether units."""
        wei = await self.w3.eth.get_balance(self.account.address)
        return Decimal(wei) / Decimal(10**18)

    async def _build_transaction(self, feed_address: str, payloads: list[bytes]) -> dict:
        contract = self._contract(feed_address)
        try:
            fee = await contract.functions.getFee(payloads).call()
            nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
            chain_id = await self.w3.eth.chain_id
            return await contract.functions.updateFeeds(payloads).build_transaction(
                {
                    "from": self.account.address,
                    "value": fee,
                    "nonce": nonce,
                    "chainId": chain_id,
                }
            )
        except ContractLogicError as e:
            raise TransactionRejectedError(f"Update would revert: {e}") from e
        except SUBMIT_ERRORS as e:
            raise SettlerError(f"Could not build transaction: {e}") from e

    async def submit_update(self, feed_address: str, payloads: list[bytes]) -> str:
        """Sign and submit an update transaction.

        The transaction is signed once, so every retry re-sends identical
        bytes and can at worst be reported as already known.

        :param feed_address: Feed contract address.
        :param payloads: Signed oracle update payloads.
        :returns: Transaction hash (0x-prefixed hex).
        :raises TransactionRejectedError: If the update would revert.
        :raises SettlerError: If the ledger never accepted the transaction.
        """
        tx = await self._build_transaction(feed_address, payloads)
        signed = self.account.sign_transaction(tx)
        tx_hash = Web3.to_hex(signed.hash)

        last_error: BaseException | None = None
        for attempt in range(1, self.MAX_SUBMIT_ATTEMPTS + 1):
            try:
                await self.w3.eth.send_raw_transaction(signed.raw_transaction)
                logger.info(f"Transaction sent: {tx_hash}")
                return tx_hash
            except Web3RPCError as e:
                if "already known" in str(e).lower():
                    logger.info(f"Transaction {tx_hash} already known to the node")
                    return tx_hash
                last_error = e
            except SUBMIT_ERRORS as e:
                last_error = e
            logger.warning(
                f"Submit {tx_hash} failed: {last_error} "
                f"(attempt {attempt}/{self.MAX_SUBMIT_ATTEMPTS})"
            )
            if attempt < self.MAX_SUBMIT_ATTEMPTS:
                await asyncio.sleep(self.submit_retry_delay * attempt)

        raise SettlerError(
            f"Transaction submission failed after {self.MAX_SUBMIT_ATTEMPTS} attempts: "
            f"{last_error}"
        )

    async def confirm(self, tx_hash: str) -> None:
        """Wait until the ledger reports the transaction's outcome.

        :param tx_hash: Transaction hash.
        :raises ConfirmationTimeoutError: If no receipt arrives in time.
        :raises TransactionRejectedError: If the transaction failed on-chain.
        """
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.confirm_timeout
            )
        except TimeExhausted as e:
            raise ConfirmationTimeoutError(
                f"Transaction {tx_hash} not confirmed within {self.confirm_timeout}s"
            ) from e

        if receipt["status"] != 1:
            raise TransactionRejectedError(f"Transaction failed on-chain: {tx_hash}")
        logger.info(f"Transaction confirmed: {tx_hash} (block {receipt.get('blockNumber')})")

    async def latest_value(self, feed_address: str, job_hash: str) -> str | None:
        """Read the feed contract's latest stored result.

        :param feed_address: Feed contract address.
        :param job_hash: Job hash identifying the aggregator.
        :returns: Latest value as a decimal string, or None if never updated.
        """
        contract = self._contract(feed_address)
        result, timestamp = await contract.functions.latestUpdate(
            job_hash_bytes(job_hash)
        ).call()
        if not timestamp:
            return None
        return format_scaled(result)

"""ChainSettler: write a feed's authoritative value on-chain.

Only this component ever holds the signing key. Per request it:

    1. Fetches a signed oracle update for the feed's job hash
    2. Submits ``updateFeeds`` to the feed contract and waits for the receipt
    3. Reports the settled value: the oracle's value, else the contract's
       latest stored value, else (event-outcome feeds) the derived outcome

Nothing here is retried beyond what the gateway and ledger already do; a
failed settlement surfaces as a named SettlerError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import Web3Exception

from .ContractUtility import ContractUtility
from .errors import ConsensusUnavailableError
from .EvmLedger import EvmLedger
from .Feed import EVENT_OUTCOME_MODULES, derive_outcome_value

if TYPE_CHECKING:
    from .ConsensusGateway import ConsensusGateway
    from .KeyProvider import KeyProvider

logger = logging.getLogger(__name__)

FEED_CONTRACT = "PullFeed"


@dataclass
class SettlementRequest:
    """What the settler needs to know about one feed.

    :ivar feed_pubkey: Feed contract address.
    :ivar feed_hash: Job hash registered with the oracle network.
    :ivar feed_id: Store identifier, for logging only.
    :ivar module: Module tag.
    :ivar winner_id: Event winner (event-outcome feeds).
    :ivar team1_id: Side A (event-outcome feeds).
    :ivar team2_id: Side B (event-outcome feeds).
    """

    feed_pubkey: str
    feed_hash: str
    feed_id: str | None = None
    module: str | None = None
    winner_id: Any = None
    team1_id: Any = None
    team2_id: Any = None

    @property
    def is_event_outcome(self) -> bool:
        return self.module in EVENT_OUTCOME_MODULES

    @property
    def label(self) -> str:
        return self.feed_id or self.feed_pubkey


@dataclass
class SettlementProof:
    """Result of a confirmed on-chain settlement.

    :ivar signature: Confirmed transaction hash.
    :ivar settled_value: Value the feed settled at, if known.
    """

    signature: str
    settled_value: str | None


class ChainSettler:
    """Settles feeds on-chain with the settler's own account.

    :ivar key_provider: Source of the signing account.
    :ivar gateway: Consensus gateway client.
    :ivar w3: AsyncWeb3 handle.
    :ivar ledger: Ledger writer, available once initialized.
    """

    def __init__(
        self,
        key_provider: KeyProvider,
        gateway: ConsensusGateway,
        w3: AsyncWeb3 | None = None,
        confirm_timeout: float = 60.0,
        ledger: EvmLedger | None = None,
    ) -> None:
        """Initialize the settler.

        :param key_provider: Source of the signing account.
        :param gateway: Consensus gateway client.
        :param w3: AsyncWeb3 handle (required unless ``ledger`` is given).
        :param confirm_timeout: Seconds to wait for confirmation.
        :param ledger: Ready ledger writer, skipping key loading.
        """
        self.key_provider = key_provider
        self.gateway = gateway
        self.w3 = w3
        self.confirm_timeout = confirm_timeout
        self.ledger = ledger

    @property
    def address(self) -> str | None:
        return self.ledger.address if self.ledger else None

    async def initialize(self) -> None:
        """Load the signing account and log its balance.

        :raises SignerConfigError: If no usable key is available.
        """
        if self.ledger is None:
            account = await self.key_provider.load_account()
            if self.w3 is None:
                raise ValueError("An AsyncWeb3 handle is required to settle on-chain")
            self.ledger = EvmLedger(
                self.w3,
                account,
                ContractUtility.get_abi(FEED_CONTRACT),
                confirm_timeout=self.confirm_timeout,
            )

        logger.info(f"Settler address: {self.ledger.address}")
        try:
            balance = await self.ledger.balance()
            logger.info(f"Settler balance: {balance}")
            if balance == 0:
                logger.warning("Settler has no funds, update transactions will fail")
        except (Web3Exception, aiohttp.ClientError, OSError) as e:
            logger.warning(f"Could not read settler balance: {e}")

    async def _fallback_value(self, request: SettlementRequest) -> str | None:
        assert self.ledger is not None
        try:
            value = await self.ledger.latest_value(request.feed_pubkey, request.feed_hash)
        except (Web3Exception, aiohttp.ClientError, OSError, ValueError) as e:
            logger.warning(f"[feed {request.label}] Could not read on-chain value: {e}")
            value = None

        if value is None and request.is_event_outcome:
            value = derive_outcome_value(request.winner_id, request.team1_id, request.team2_id)
            logger.info(f"[feed {request.label}] Using derived outcome value: {value}")
        return value

    async def settle(self, request: SettlementRequest) -> SettlementProof:
        """Settle one feed on-chain.

        :param request: Feed to settle.
        :returns: Confirmed transaction and the settled value.
        :raises ValueError: If the feed address is not a valid address.
        :raises SignerConfigError: If the signing account cannot be loaded.
        :raises ConsensusUnavailableError: If no oracle update was produced.
        :raises TransactionRejectedError: If the ledger rejected the update.
        :raises ConfirmationTimeoutError: If confirmation did not arrive.
        """
        if not Web3.is_address(request.feed_pubkey):
            raise ValueError(f"Invalid feed address: {request.feed_pubkey}")

        if self.ledger is None:
            await self.initialize()
        assert self.ledger is not None

        logger.info(f"[feed {request.label}] Settling {request.feed_pubkey}")
        update = await self.gateway.fetch_update(request.feed_hash)
        try:
            payloads = update.payloads()
        except ValueError as e:
            raise ConsensusUnavailableError(f"Malformed oracle update: {e}") from e

        tx_hash = await self.ledger.submit_update(request.feed_pubkey, payloads)
        await self.ledger.confirm(tx_hash)

        value = update.first_value
        if value is None:
            value = await self._fallback_value(request)
        elif request.is_event_outcome:
            derived = derive_outcome_value(
                request.winner_id, request.team1_id, request.team2_id
            )
            if derived is not None and derived != value:
                logger.warning(
                    f"[feed {request.label}] Oracle value {value} does not match "
                    f"stored outcome {derived}"
                )

        logger.info(f"[feed {request.label}] Settled on-chain: value={value} tx={tx_hash}")
        return SettlementProof(signature=tx_hash, settled_value=value)

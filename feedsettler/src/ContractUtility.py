"""ContractUtility: Web3 initialization and contract ABI loading."""

import json
import os
from pathlib import Path

from web3 import AsyncHTTPProvider, AsyncWeb3

# Default RPC endpoints per network. RPC_URL overrides them.
NETWORKS: dict[str, str] = {
    "arbitrum": "https://arb1.arbitrum.io/rpc",
    "arbitrum-sepolia": "https://sepolia-rollup.arbitrum.io/rpc",
    "localnet": "http://localhost:8545",
}


class ContractUtility:
    """Utility for Web3 connection and contract ABI loading.

    The AsyncWeb3 handle is created once per settler process and passed by
    reference to everything that talks to the ledger.

    :ivar network: Network RPC URL.
    :ivar w3: AsyncWeb3 instance.
    """

    def __init__(self, network_name: str, rpc_url: str | None = None) -> None:
        """Initialize the contract utility.

        :param network_name: Name of the network to connect to.
        :param rpc_url: Explicit RPC URL (takes precedence over RPC_URL env).
        """
        self.network = (
            rpc_url
            or os.environ.get("RPC_URL")
            or NETWORKS.get(network_name, network_name)
        )
        self.w3 = AsyncWeb3(AsyncHTTPProvider(self.network))

    @staticmethod
    def get_abi(contract_name: str) -> list:
        """Fetch the ABI of a contract from the bundled abi folder.

        :param contract_name: Name of the contract (e.g., "PullFeed").
        :returns: Contract ABI.
        """
        abi_path = (Path(__file__).parent / "abi" / f"{contract_name}.json").resolve()

        with open(abi_path, "r") as file:
            contract_data = json.load(file)

        return contract_data["abi"]

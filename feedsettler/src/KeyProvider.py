"""KeyProvider: Abstract source of the settler's signing account."""

import logging
import os
from abc import ABC, abstractmethod

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .errors import SignerConfigError

logger = logging.getLogger(__name__)


def account_from_key(private_key: str) -> LocalAccount:
    """Build a signing account from a hex private key.

    :param private_key: Hex-encoded secp256k1 key, with or without 0x.
    :returns: Local signing account.
    :raises SignerConfigError: If the key is malformed.
    """
    key = private_key.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    try:
        return Account.from_key(key)
    except Exception as e:  # eth_keys raises its own ValidationError for bad lengths
        raise SignerConfigError(f"Invalid settler private key: {e}") from e


class KeyProvider(ABC):
    """Abstract base class for settler key sources.

    The account returned here never leaves the settler process.
    """

    @abstractmethod
    async def load_account(self) -> LocalAccount:
        """Load the signing account.

        :returns: Local signing account.
        :raises SignerConfigError: If no usable key is available.
        """
        pass


class EnvKeyProvider(KeyProvider):
    """Reads the settler key from an environment variable.

    :cvar ENV_VAR: Default variable name.
    :ivar env_var: Variable holding the hex private key.
    """

    ENV_VAR = "SETTLER_PRIVATE_KEY"

    def __init__(self, env_var: str = ENV_VAR) -> None:
        """Initialize the provider.

        :param env_var: Variable holding the hex private key.
        """
        self.env_var = env_var

    async def load_account(self) -> LocalAccount:
        private_key = os.environ.get(self.env_var)
        if not private_key:
            raise SignerConfigError(f"{self.env_var} not configured")
        return account_from_key(private_key)

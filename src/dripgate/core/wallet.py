"""Payout wallet used to sign token transfers."""

from abc import ABC, abstractmethod
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from pydantic import SecretStr

from dripgate.errors import ConfigurationError


class WalletProvider(ABC):
    """Source of the signing account for outgoing transfers."""

    @abstractmethod
    def get_account(self) -> LocalAccount:
        """Return the account used for transaction signing."""
        ...

    @property
    def address(self) -> str:
        """Checksummed payout address."""
        return self.get_account().address


class PayoutWallet(WalletProvider):
    """Payout key loaded from a secret value or a key file.

    Parameters
    ----------
    private_key : SecretStr, optional
        Hex private key, usually from ``DRIPGATE_PAYOUT_PRIVATE_KEY``.
    private_key_file : str, optional
        Path to a file holding the hex private key.

    Raises
    ------
    ConfigurationError
        If no key source is given, the file is missing, or the key is malformed.
    """

    def __init__(
        self,
        private_key: SecretStr | None = None,
        private_key_file: str | None = None,
    ):
        if private_key is not None:
            raw = private_key.get_secret_value()
        elif private_key_file is not None:
            key_path = Path(private_key_file).expanduser()
            if not key_path.is_file():
                raise ConfigurationError(f"Payout key file not found: {private_key_file}")
            raw = key_path.read_text().strip()
        else:
            raise ConfigurationError("A payout private key or key file is required")

        try:
            self._account = Account.from_key(raw)
        except Exception as e:
            # never echo the key material
            raise ConfigurationError("Payout private key is malformed") from e

    def get_account(self) -> LocalAccount:
        return self._account

"""EVM address helpers."""

import re

# Ethereum address pattern: 0x followed by 40 hex characters
ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def validate_address(address: str) -> bool:
    """Validate Ethereum address format.

    Parameters
    ----------
    address : str
        Address to validate.

    Returns
    -------
    bool
        True if valid Ethereum address format.
    """
    return isinstance(address, str) and bool(ADDRESS_PATTERN.match(address))


def normalize_address(address: str) -> str:
    """Lowercase an address so case variants compare equal."""
    return address.strip().lower()

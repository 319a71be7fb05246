"""Wallet address validation.

Addresses are accepted in any case; mixed-case input must carry a valid
EIP-55 checksum.
"""

from __future__ import annotations

from web3 import Web3


class InvalidAddressError(ValueError):
    """Raised when a wallet address is not a valid EVM address."""


def is_valid_address(address: object) -> bool:
    """Return True if ``address`` is a 20-byte hex address with a valid checksum."""
    return isinstance(address, str) and Web3.is_address(address)


def to_checksum_address(address: str) -> str:
    """Validate an address and return its EIP-55 checksummed form.

    Raises:
        InvalidAddressError: If the address is malformed.
    """
    if not is_valid_address(address):
        raise InvalidAddressError(f"Invalid wallet address: {address}")
    return Web3.to_checksum_address(address)


def normalize_address(address: str) -> str:
    """Validate an address and return it lowercased (store/cache key form)."""
    return to_checksum_address(address).lower()

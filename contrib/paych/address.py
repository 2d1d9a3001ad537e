"""
paych - Address and amount parsing

Everything the CLI takes from the user goes through here before any API
call is made.
"""

from web3 import Web3


class AddressError(ValueError):
    """Address string is malformed."""


class AmountError(ValueError):
    """Amount string is malformed."""


def parse_address(value: str) -> str:
    """
    Parse an account or channel address.

    Args:
        value: Hex address, with or without 0x prefix. Mixed-case input
            must carry a valid EIP-55 checksum.

    Returns:
        Checksummed address
    """
    if not isinstance(value, str) or not value.strip():
        raise AddressError("empty address")
    value = value.strip()
    if not Web3.is_address(value):
        raise AddressError(f"invalid address: {value}")
    return Web3.to_checksum_address(value)


def parse_amount(value: str) -> int:
    """
    Parse a non-negative integer amount in base units.

    Args:
        value: Decimal digits, e.g. "1000"

    Returns:
        Amount as int
    """
    if isinstance(value, int) and not isinstance(value, bool):
        amount = value
    else:
        text = str(value).strip()
        if not text:
            raise AmountError("empty amount")
        try:
            amount = int(text, 10)
        except ValueError:
            raise AmountError(f"invalid amount: {text}")
    if amount < 0:
        raise AmountError(f"amount must not be negative: {amount}")
    return amount

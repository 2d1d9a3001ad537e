"""Tests for address and amount parsing."""

import pytest

from paych import AddressError, AmountError, parse_address, parse_amount

CHECKSUMMED = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"


def _break_checksum(address: str) -> str:
    body = address[2:]
    for i, c in enumerate(body):
        if c.isalpha():
            return "0x" + body[:i] + c.swapcase() + body[i + 1:]
    raise AssertionError("no letters to flip")


def test_lowercase_address_is_checksummed():
    assert parse_address(CHECKSUMMED.lower()) == CHECKSUMMED


def test_surrounding_whitespace_is_ignored():
    assert parse_address(f"  {CHECKSUMMED}\n") == CHECKSUMMED


@pytest.mark.parametrize("value", [
    "",
    "   ",
    "0x",
    "0x1234",
    "0x" + "g" * 40,
    CHECKSUMMED + "00",
    "t01234",
    _break_checksum(CHECKSUMMED),
])
def test_malformed_addresses(value):
    with pytest.raises(AddressError):
        parse_address(value)


def test_address_error_is_value_error():
    assert issubclass(AddressError, ValueError)


@pytest.mark.parametrize("value,expected", [
    ("0", 0),
    ("1000", 1000),
    (" 42 ", 42),
    (str(10 ** 30), 10 ** 30),
    (7, 7),
])
def test_parse_amount(value, expected):
    assert parse_amount(value) == expected


@pytest.mark.parametrize("value", ["", "-5", "1.5", "abc", "1e3", "0x10"])
def test_parse_amount_rejects(value):
    with pytest.raises(AmountError):
        parse_amount(value)

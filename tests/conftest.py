"""Shared pytest fixtures for the paych test suite.

* No network access: the chain is the in-memory LocalChain and HTTP is
  faked at the requests boundary.
* Keys are fixed so failures are reproducible.
"""

import pytest

from paych import ChannelStore, LocalChain, PaychManager, SignedVoucher, Wallet

ALICE_KEY = "0x" + "11" * 32
BOB_KEY = "0x" + "22" * 32
CAROL_KEY = "0x" + "33" * 32

FUNDS = 10_000
ESCROW = 1_000


@pytest.fixture
def chain():
    return LocalChain(settle_delay=3)


@pytest.fixture
def wallet():
    return Wallet()


@pytest.fixture
def alice(wallet, chain):
    address = wallet.import_key(ALICE_KEY)
    chain.fund(address, FUNDS)
    return address


@pytest.fixture
def bob(wallet, chain):
    address = wallet.import_key(BOB_KEY)
    chain.fund(address, FUNDS)
    return address


@pytest.fixture
def mgr(chain, wallet):
    return PaychManager(chain, wallet, ChannelStore())


@pytest.fixture
def channel(mgr, alice, bob):
    """Outbound channel alice -> bob escrowing ESCROW."""
    return mgr.paych_create(alice, bob, ESCROW)


@pytest.fixture
def sign(wallet):
    """Build and sign a voucher with one of the wallet's keys."""
    def _sign(signer, channel_addr, lane=0, nonce=1, amount=100, time_lock=0, secret_hash=""):
        sv = SignedVoucher(channel_addr=channel_addr, lane=lane, nonce=nonce, amount=amount,
                           time_lock=time_lock, secret_hash=secret_hash)
        sv.signature = wallet.sign_voucher(signer, sv)
        return sv
    return _sign

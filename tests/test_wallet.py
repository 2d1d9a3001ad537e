"""Tests for the wallet and voucher signatures."""

import json

import pytest

from paych import SignedVoucher, Wallet, WalletError, recover_signer
from paych.wallet import mask_secret

from conftest import ALICE_KEY, BOB_KEY

CH = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"


def test_signature_recovers_to_signer():
    wallet = Wallet()
    alice = wallet.import_key(ALICE_KEY)
    sv = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=100)

    sv.signature = wallet.sign_voucher(alice, sv)

    assert sv.signature.startswith("0x")
    assert len(sv.signature) == 2 + 65 * 2
    assert recover_signer(sv) == alice


def test_tampered_voucher_recovers_other_address():
    wallet = Wallet()
    alice = wallet.import_key(ALICE_KEY)
    sv = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=100)
    sv.signature = wallet.sign_voucher(alice, sv)

    sv.amount = 1_000_000

    assert recover_signer(sv) != alice


@pytest.mark.parametrize("signature", ["", "0x", "0xzz", "0x" + "00" * 65, "0x1234"])
def test_bad_signatures_recover_nothing(signature):
    sv = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=100, signature=signature)
    assert recover_signer(sv) is None


def test_sign_without_key_fails():
    wallet = Wallet()
    sv = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=100)
    with pytest.raises(WalletError):
        wallet.sign_voucher(CH, sv)


def test_import_rejects_garbage_key():
    with pytest.raises(WalletError):
        Wallet().import_key("0x1234")


def test_keystore_persists(tmp_path):
    path = str(tmp_path / "repo" / "keystore.json")
    wallet = Wallet(path)
    alice = wallet.import_key(ALICE_KEY)
    fresh = wallet.new_address()

    reloaded = Wallet(path)

    assert set(reloaded.addresses()) == {alice, fresh}
    assert reloaded.has_key(alice)
    with open(path) as f:
        assert len(json.load(f)["keys"]) == 2


def test_corrupt_keystore_raises(tmp_path):
    path = tmp_path / "keystore.json"
    path.write_text("{not json")
    with pytest.raises(WalletError):
        Wallet(str(path))


def test_mask_secret_hides_keys():
    masked = mask_secret(BOB_KEY)
    assert BOB_KEY not in masked
    assert masked.startswith(BOB_KEY[:8])
    assert mask_secret("short") == "***"

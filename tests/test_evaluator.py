"""Tests for voucher validity, spendability and best-spendable selection."""

import hashlib

import pytest

from paych import (
    ChannelState, LaneState, NoSpendableVoucherError, SignedVoucher, SpendReason,
    VoucherError, VoucherEvaluator, select_best,
)

CH = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"
OTHER_CH = "0xAb8483F64d9C6d1EcF9b849Ae677dD3315835cb2"


@pytest.fixture
def evaluator():
    return VoucherEvaluator()


@pytest.fixture
def state(alice, bob):
    return ChannelState(channel_addr=CH, from_addr=alice, to_addr=bob, balance=1000)


def test_fresh_voucher_is_spendable(evaluator, state, sign, alice):
    result = evaluator.check_spendable(CH, sign(alice, CH, amount=500), state, height=1)
    assert result.spendable
    assert result.reason is None


def test_no_state_means_channel_not_active(evaluator, sign, alice):
    result = evaluator.check_spendable(CH, sign(alice, CH), None, height=1)
    assert result.reason == SpendReason.CHANNEL_NOT_ACTIVE


def test_collected_channel_not_active(evaluator, state, sign, alice):
    state.collected = True
    assert evaluator.check_spendable(CH, sign(alice, CH), state, 1).reason == SpendReason.CHANNEL_NOT_ACTIVE


def test_voucher_for_other_channel(evaluator, state, sign, alice):
    result = evaluator.check_spendable(CH, sign(alice, OTHER_CH), state, 1)
    assert result.reason == SpendReason.WRONG_CHANNEL


def test_signature_must_come_from_payer(evaluator, state, sign, bob):
    result = evaluator.check_spendable(CH, sign(bob, CH), state, 1)
    assert result.reason == SpendReason.INVALID_SIGNATURE


def test_unsigned_voucher_rejected(evaluator, state):
    sv = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=1)
    assert evaluator.check_spendable(CH, sv, state, 1).reason == SpendReason.INVALID_SIGNATURE


def test_settled_channel(evaluator, state, sign, alice):
    state.settling_at = 5
    assert evaluator.check_spendable(CH, sign(alice, CH), state, 4).spendable
    assert evaluator.check_spendable(CH, sign(alice, CH), state, 5).reason == SpendReason.CHANNEL_SETTLED


def test_time_lock(evaluator, state, sign, alice):
    sv = sign(alice, CH, time_lock=10)
    assert evaluator.check_spendable(CH, sv, state, 9).reason == SpendReason.TIME_LOCKED
    assert evaluator.check_spendable(CH, sv, state, 10).spendable
    # Still worth storing before the lock expires
    evaluator.check_valid(CH, sv, state, 9)


def test_secret_preimage(evaluator, state, sign, alice):
    secret = "42" * 32
    secret_hash = hashlib.sha256(bytes.fromhex(secret)).hexdigest()
    sv = sign(alice, CH, secret_hash=secret_hash)

    assert evaluator.check_spendable(CH, sv, state, 1).reason == SpendReason.SECRET_MISMATCH
    assert evaluator.check_spendable(CH, sv, state, 1, secret="00" * 32).reason == SpendReason.SECRET_MISMATCH
    assert evaluator.check_spendable(CH, sv, state, 1, secret="nothex").reason == SpendReason.SECRET_MISMATCH
    assert evaluator.check_spendable(CH, sv, state, 1, secret=secret).spendable
    assert evaluator.check_spendable(CH, sv, state, 1, secret="0x" + secret).spendable


def test_stale_nonce(evaluator, state, sign, alice):
    state.lanes[0] = LaneState(redeemed=100, nonce=3)

    assert evaluator.check_spendable(CH, sign(alice, CH, nonce=3, amount=200), state, 1).reason \
        == SpendReason.STALE_NONCE
    assert evaluator.check_spendable(CH, sign(alice, CH, nonce=2, amount=200), state, 1).reason \
        == SpendReason.STALE_NONCE
    assert evaluator.check_spendable(CH, sign(alice, CH, nonce=4, amount=200), state, 1).spendable
    # Other lanes have their own nonce sequence
    assert evaluator.check_spendable(CH, sign(alice, CH, lane=1, nonce=1), state, 1).spendable


def test_exceeds_balance(evaluator, state, sign, alice):
    state.lanes[0] = LaneState(redeemed=300, nonce=1)
    state.to_send = 300 + 600  # lane 1 redeemed 600 elsewhere
    state.lanes[1] = LaneState(redeemed=600, nonce=1)

    assert evaluator.check_spendable(CH, sign(alice, CH, nonce=2, amount=400), state, 1).spendable
    result = evaluator.check_spendable(CH, sign(alice, CH, nonce=2, amount=401), state, 1)
    assert result.reason == SpendReason.EXCEEDS_BALANCE


def test_negative_balance(evaluator, state, sign, alice):
    state.lanes[0] = LaneState(redeemed=300, nonce=1)
    state.to_send = 300
    assert evaluator.check_spendable(CH, sign(alice, CH, nonce=2, amount=0), state, 1).spendable

    state.to_send = 100  # inconsistent on purpose: lowering lane 0 would go below zero
    result = evaluator.check_spendable(CH, sign(alice, CH, nonce=2, amount=0), state, 1)
    assert result.reason == SpendReason.NEGATIVE_BALANCE


def test_check_valid_raises_with_reason(evaluator, state, sign, bob):
    with pytest.raises(VoucherError) as exc:
        evaluator.check_valid(CH, sign(bob, CH), state, 1)
    assert exc.value.reason == SpendReason.INVALID_SIGNATURE
    assert str(exc.value) == "signature verification failed"


def test_check_valid_counts_other_lanes(evaluator, state, sign, alice):
    known = [
        sign(alice, CH, lane=1, nonce=1, amount=300),
        sign(alice, CH, lane=1, nonce=2, amount=600),
        sign(alice, CH, lane=2, nonce=1, amount=100),
    ]

    assert evaluator.outstanding_on_other_lanes(sign(alice, CH, lane=0), state, known) == 700
    evaluator.check_valid(CH, sign(alice, CH, lane=0, amount=300), state, 1, known=known)
    with pytest.raises(VoucherError) as exc:
        evaluator.check_valid(CH, sign(alice, CH, lane=0, amount=301), state, 1, known=known)
    assert exc.value.reason == SpendReason.EXCEEDS_BALANCE


def test_outstanding_ignores_redeemed_vouchers(evaluator, state, sign, alice):
    state.lanes[1] = LaneState(redeemed=600, nonce=2)
    state.to_send = 600
    known = [sign(alice, CH, lane=1, nonce=2, amount=600)]

    assert evaluator.outstanding_on_other_lanes(sign(alice, CH, lane=0), state, known) == 0


def _v(amount, lane=0, nonce=1):
    return SignedVoucher(channel_addr=CH, lane=lane, nonce=nonce, amount=amount)


def test_select_best_takes_highest_spendable_amount():
    vouchers = [_v(10), _v(50, lane=1), _v(90, lane=2), _v(70, lane=3)]
    best = select_best(vouchers, lambda v: v.lane != 2)
    assert best.amount == 70


def test_select_best_tie_goes_to_first_listed():
    first, second = _v(50, lane=0), _v(50, lane=1)
    assert select_best([first, second], lambda v: True) is first


def test_select_best_none_spendable():
    with pytest.raises(NoSpendableVoucherError) as exc:
        select_best([_v(10), _v(20)], lambda v: False)
    assert str(exc.value) == "No spendable vouchers for that channel"

    with pytest.raises(NoSpendableVoucherError):
        select_best([], lambda v: True)

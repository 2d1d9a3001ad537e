"""
paych - Voucher Evaluator

Decides whether a voucher is valid (worth storing) and whether it is
spendable (would be accepted on chain right now) given the channel's
on-chain state.

Checks, in order:
  1. channel exists on chain and has not been collected
  2. voucher is for this channel
  3. signature recovers to the channel's from-address
  4. settling window has not passed
  5. time lock has been reached               (spendability only)
  6. secret preimage matches secret_hash       (spendability only)
  7. nonce is above the lane's redeemed nonce
  8. redemption keeps to_send >= 0
  9. redemption keeps to_send <= balance
"""

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from .paych_types import ChannelState, SignedVoucher, short
from .wallet import recover_signer

log = logging.getLogger(__name__)


class SpendReason(Enum):
    """Why a voucher cannot be redeemed"""
    CHANNEL_NOT_ACTIVE = "channel_not_active"
    WRONG_CHANNEL = "wrong_channel"
    INVALID_SIGNATURE = "invalid_signature"
    CHANNEL_SETTLED = "channel_settled"
    TIME_LOCKED = "time_locked"
    SECRET_MISMATCH = "secret_mismatch"
    STALE_NONCE = "stale_nonce"
    NEGATIVE_BALANCE = "negative_balance"
    EXCEEDS_BALANCE = "exceeds_balance"


class VoucherError(Exception):
    """Voucher failed validation."""
    def __init__(self, reason: SpendReason, detail: str):
        self.reason = reason
        self.detail = detail
        super().__init__(detail)


class NoSpendableVoucherError(Exception):
    """No stored voucher for the channel is currently spendable."""
    def __init__(self, message: str = "No spendable vouchers for that channel"):
        super().__init__(message)


@dataclass
class Evaluation:
    """Outcome of evaluating a voucher against channel state"""
    spendable: bool
    reason: Optional[SpendReason] = None
    detail: str = ""

    def raise_for_reason(self):
        """Raise VoucherError if the evaluation failed."""
        if not self.spendable:
            raise VoucherError(self.reason, self.detail)


OK = Evaluation(spendable=True)


def verify_preimage(secret_hash: str, preimage: Optional[str]) -> bool:
    """
    Verify that preimage matches secret_hash.

    Returns:
        True if SHA256(preimage) == secret_hash
    """
    if not isinstance(preimage, str) or not preimage:
        return False
    preimage = preimage[2:] if preimage.startswith("0x") else preimage
    expected = secret_hash[2:] if secret_hash.startswith("0x") else secret_hash
    try:
        computed = hashlib.sha256(bytes.fromhex(preimage)).hexdigest()
    except ValueError:
        return False
    return computed.lower() == expected.lower()


class VoucherEvaluator:
    """
    Voucher validity and spendability checks.

    Usage:
        evaluator = VoucherEvaluator()

        # Before storing a voucher
        evaluator.check_valid(ch, sv, state, height, known=stored_vouchers)

        # Before redeeming it
        result = evaluator.check_spendable(ch, sv, state, height, secret=preimage)
        if not result.spendable:
            print(result.reason, result.detail)
    """

    def __init__(self, recover: Callable[[SignedVoucher], Optional[str]] = recover_signer):
        """
        Initialize evaluator.

        Args:
            recover: Returns the address that signed a voucher (or None)
        """
        self.recover = recover

    def evaluate(self, channel_addr: str, sv: SignedVoucher,
                 state: Optional[ChannelState], height: int,
                 secret: Optional[str] = None,
                 redeem_now: bool = True,
                 outstanding: int = 0) -> Evaluation:
        """
        Run all checks and return the first failure.

        Args:
            channel_addr: Channel the voucher is presented for
            sv: Voucher
            state: On-chain channel state (None if not on chain yet)
            height: Height the voucher would be redeemed at
            secret: Preimage for vouchers carrying a secret_hash
            redeem_now: Enforce time lock and secret (spendability)
            outstanding: Amount already promised on other lanes, counted
                against the balance on top of to_send
        """
        if state is None or state.collected:
            return Evaluation(False, SpendReason.CHANNEL_NOT_ACTIVE, "channel not active")

        if sv.channel_addr.lower() != channel_addr.lower():
            return Evaluation(False, SpendReason.WRONG_CHANNEL,
                              f"voucher is for channel {sv.channel_addr}, not {channel_addr}")

        signer = self.recover(sv)
        if signer is None or signer.lower() != state.from_addr.lower():
            return Evaluation(False, SpendReason.INVALID_SIGNATURE, "signature verification failed")

        if state.settling_at and height >= state.settling_at:
            return Evaluation(False, SpendReason.CHANNEL_SETTLED, "channel has settled")

        if redeem_now:
            if height < sv.time_lock:
                return Evaluation(False, SpendReason.TIME_LOCKED,
                                  f"cannot use this voucher yet! (time lock {sv.time_lock}, height {height})")
            if sv.secret_hash and not verify_preimage(sv.secret_hash, secret):
                return Evaluation(False, SpendReason.SECRET_MISMATCH, "incorrect secret preimage")

        lane = state.lane(sv.lane)
        if sv.nonce <= lane.nonce:
            return Evaluation(False, SpendReason.STALE_NONCE,
                              f"nonce too low (lane {sv.lane} nonce {lane.nonce}, voucher nonce {sv.nonce})")

        new_to_send = state.to_send + (sv.amount - lane.redeemed)
        if new_to_send < 0:
            return Evaluation(False, SpendReason.NEGATIVE_BALANCE,
                              "voucher would leave channel balance negative")
        if new_to_send + outstanding > state.balance:
            return Evaluation(False, SpendReason.EXCEEDS_BALANCE,
                              "not enough funds in channel to cover voucher")

        return OK

    def check_valid(self, channel_addr: str, sv: SignedVoucher,
                    state: Optional[ChannelState], height: int,
                    known: Iterable[SignedVoucher] = ()) -> None:
        """
        Validate a voucher before storing it.

        Time locks and secrets are not enforced: a voucher that can only be
        redeemed later is still worth keeping. Vouchers already known for
        other lanes count against the channel balance.

        Raises:
            VoucherError: with the reason for the first failed check
        """
        outstanding = 0
        if state is not None:
            outstanding = self.outstanding_on_other_lanes(sv, state, known)
        result = self.evaluate(channel_addr, sv, state, height,
                               redeem_now=False, outstanding=outstanding)
        if not result.spendable:
            log.debug(f"Voucher lane={sv.lane} nonce={sv.nonce} on {short(channel_addr)} "
                      f"invalid: {result.reason.value}")
        result.raise_for_reason()

    def check_spendable(self, channel_addr: str, sv: SignedVoucher,
                        state: Optional[ChannelState], height: int,
                        secret: Optional[str] = None) -> Evaluation:
        """Evaluate whether the voucher would be accepted on chain at height."""
        return self.evaluate(channel_addr, sv, state, height, secret=secret)

    @staticmethod
    def outstanding_on_other_lanes(sv: SignedVoucher, state: ChannelState,
                                   known: Iterable[SignedVoucher]) -> int:
        """
        Sum of what the best unredeemed voucher on every other lane adds
        to to_send.
        """
        best = {}
        for v in known:
            if v.lane == sv.lane:
                continue
            lane = state.lane(v.lane)
            if v.nonce <= lane.nonce:
                continue
            if v.lane not in best or v.nonce > best[v.lane].nonce:
                best[v.lane] = v

        total = 0
        for lane_id, v in best.items():
            total += max(0, v.amount - state.lane(lane_id).redeemed)
        return total


def select_best(vouchers: Iterable[SignedVoucher],
                is_spendable: Callable[[SignedVoucher], bool]) -> SignedVoucher:
    """
    Pick the highest-amount voucher among the spendable ones.

    Ties go to the voucher listed first.

    Raises:
        NoSpendableVoucherError: if none is spendable
    """
    best = None
    for v in vouchers:
        if not is_spendable(v):
            continue
        if best is None or v.amount > best.amount:
            best = v
    if best is None:
        raise NoSpendableVoucherError()
    return best

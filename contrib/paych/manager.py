"""
paych - Payment Channel Manager

The engine behind the Paych* API: channel creation and tracking, voucher
creation, validation, storage, spendability and submission.
"""

import logging
from typing import List, Optional

from .chain import INIT_ACTOR_ADDR
from .evaluator import Evaluation, SpendReason, VoucherEvaluator, select_best
from .paych_types import (
    ChannelState, Direction, Message, Method, MsgLookup, SignedVoucher, short,
)
from .store import ChannelStore
from .submitter import SubmissionPipeline
from .wallet import Wallet, WalletError

log = logging.getLogger(__name__)


class PaychManager:
    """
    Payment channel manager.

    Usage:
        mgr = PaychManager(chain, wallet, store)

        ch = mgr.paych_create(alice, bob, 1000)
        sv = mgr.paych_voucher_create(ch, 100, lane=0)

        # On the receiving node
        mgr.paych_voucher_add(ch, sv)
        best = mgr.paych_voucher_best_spendable(ch)
        cid = mgr.paych_voucher_submit(ch, best)
    """

    def __init__(self, chain, wallet: Wallet, store: ChannelStore,
                 evaluator: Optional[VoucherEvaluator] = None,
                 faucet_amount: int = 0):
        """
        Initialize manager.

        Args:
            chain: Chain with channel_state(), push_message(), wait_msg()
            wallet: Keys for the addresses this node controls
            store: Channel registry and voucher store
            evaluator: Voucher evaluator (default one if omitted)
            faucet_amount: Devnet funds given to new wallet addresses
        """
        self.chain = chain
        self.wallet = wallet
        self.store = store
        self.evaluator = evaluator or VoucherEvaluator()
        self.pipeline = SubmissionPipeline(chain)
        self.faucet_amount = faucet_amount

    def _state(self, channel_addr: str) -> Optional[ChannelState]:
        return self.chain.channel_state(channel_addr)

    def _redeem_height(self) -> int:
        """Height a message pushed now would execute at."""
        return self.chain.height + 1

    # ═══════════════════════════════════════════════════════════════════════
    # CHANNELS
    # ═══════════════════════════════════════════════════════════════════════

    def paych_create(self, from_addr: str, to_addr: str, amount: int) -> str:
        """
        Create a channel funded with amount and wait for it to land.

        Returns:
            Channel address
        """
        if not self.wallet.has_key(from_addr):
            raise WalletError(f"no key for address {from_addr}")

        msg = Message(
            from_addr=from_addr,
            to_addr=INIT_ACTOR_ADDR,
            method=Method.CREATE_CHANNEL,
            value=amount,
            params={"to": to_addr}
        )
        lookup = self.pipeline.push_and_wait(msg)
        channel_addr = lookup.receipt.return_value
        self.store.track_channel(channel_addr, from_addr, to_addr, Direction.OUTBOUND)
        log.info(f"Created channel {channel_addr} {short(from_addr)} -> {short(to_addr)} "
                 f"with {amount}")
        return channel_addr

    def paych_list(self) -> List[str]:
        return self.store.list_channels()

    def paych_status(self, channel_addr: str) -> dict:
        """Local tracking info plus the on-chain state (if any)."""
        info = self.store.get_channel(channel_addr)
        state = self._state(channel_addr)
        return {
            "channel_addr": info.channel_addr,
            "control_addr": info.control_addr,
            "target_addr": info.target_addr,
            "direction": info.direction.value,
            "next_lane": info.next_lane,
            "voucher_count": len(info.vouchers),
            "state": state.to_dict() if state else None
        }

    def paych_allocate_lane(self, channel_addr: str) -> int:
        return self.store.allocate_lane(channel_addr)

    def paych_settle(self, channel_addr: str) -> str:
        """Start the settling window. Returns the message cid."""
        info = self.store.get_channel(channel_addr)
        msg = Message(info.control_addr, channel_addr, Method.SETTLE)
        return self.pipeline.push(msg)

    def paych_collect(self, channel_addr: str) -> str:
        """Pay out a settled channel. Returns the message cid."""
        info = self.store.get_channel(channel_addr)
        msg = Message(info.control_addr, channel_addr, Method.COLLECT)
        return self.pipeline.push(msg)

    # ═══════════════════════════════════════════════════════════════════════
    # VOUCHERS
    # ═══════════════════════════════════════════════════════════════════════

    def paych_voucher_create(self, channel_addr: str, amount: int, lane: int = 0,
                             time_lock: int = 0, secret_hash: str = "") -> SignedVoucher:
        """
        Sign a new voucher on an outbound channel and store it.

        The nonce is one above both the highest stored nonce and the
        lane's redeemed nonce.
        """
        info = self.store.get_channel(channel_addr)
        if info.direction != Direction.OUTBOUND:
            raise WalletError(f"channel {channel_addr} is inbound; only the payer signs vouchers")

        nonce = self.store.next_nonce(channel_addr, lane)
        state = self._state(channel_addr)
        if state is not None:
            nonce = max(nonce, state.lane(lane).nonce + 1)

        sv = SignedVoucher(
            channel_addr=channel_addr,
            lane=lane,
            nonce=nonce,
            amount=amount,
            time_lock=time_lock,
            secret_hash=secret_hash
        )
        sv.signature = self.wallet.sign_voucher(info.control_addr, sv)

        self.paych_voucher_check_valid(channel_addr, sv)
        self.store.add_voucher(channel_addr, sv)
        log.info(f"Created voucher on {short(channel_addr)} lane={lane} nonce={nonce} amount={amount}")
        return sv

    def paych_voucher_check_valid(self, channel_addr: str, sv: SignedVoucher) -> None:
        """Raise VoucherError if sv is not valid for the channel."""
        known = []
        if self.store.has_channel(channel_addr):
            known = self.store.list_vouchers(channel_addr)
        self.evaluator.check_valid(channel_addr, sv, self._state(channel_addr),
                                   self._redeem_height(), known=known)

    def paych_voucher_evaluate(self, channel_addr: str, sv: SignedVoucher,
                               secret: Optional[str] = None) -> Evaluation:
        """
        Spendability of sv with the reason when not spendable.

        Only the highest-nonce stored voucher of a lane can be spent; older
        ones are reported as stale before the chain state is consulted.
        """
        if self.store.has_channel(channel_addr):
            lane_vouchers = self.store.lane_vouchers(channel_addr, sv.lane)
            if lane_vouchers and lane_vouchers[-1].nonce > sv.nonce:
                return Evaluation(False, SpendReason.STALE_NONCE,
                                  f"voucher superseded by nonce {lane_vouchers[-1].nonce} "
                                  f"on lane {sv.lane}")
        return self.evaluator.check_spendable(channel_addr, sv, self._state(channel_addr),
                                              self._redeem_height(), secret=secret)

    def paych_voucher_check_spendable(self, channel_addr: str, sv: SignedVoucher,
                                      secret: Optional[str] = None) -> bool:
        result = self.paych_voucher_evaluate(channel_addr, sv, secret)
        if not result.spendable:
            log.debug(f"Voucher lane={sv.lane} nonce={sv.nonce} on {short(channel_addr)} "
                      f"not spendable: {result.detail}")
        return result.spendable

    def paych_voucher_add(self, channel_addr: str, sv: SignedVoucher) -> bool:
        """
        Validate and store a received voucher.

        Unknown channels are tracked as inbound.

        Returns:
            True if stored, False if already known
        """
        self.paych_voucher_check_valid(channel_addr, sv)

        if not self.store.has_channel(channel_addr):
            state = self._state(channel_addr)
            self.store.track_channel(channel_addr, state.to_addr, state.from_addr,
                                     Direction.INBOUND)
        return self.store.add_voucher(channel_addr, sv)

    def paych_voucher_list(self, channel_addr: str) -> List[SignedVoucher]:
        return self.store.list_vouchers(channel_addr)

    def paych_voucher_best_spendable(self, channel_addr: str) -> SignedVoucher:
        """
        Highest-amount spendable stored voucher.

        Raises:
            NoSpendableVoucherError: if none is spendable
        """
        vouchers = self.store.list_vouchers(channel_addr)
        return select_best(vouchers, lambda v: self.paych_voucher_check_spendable(channel_addr, v))

    def paych_voucher_submit(self, channel_addr: str, sv: SignedVoucher,
                             secret: Optional[str] = None) -> str:
        """
        Send sv to the chain from our side of the channel.

        Returns:
            Message cid; pass it to chain_wait_msg() for the exit status
        """
        info = self.store.get_channel(channel_addr)
        return self.pipeline.submit(info.control_addr, channel_addr, sv, secret)

    # ═══════════════════════════════════════════════════════════════════════
    # CHAIN / WALLET
    # ═══════════════════════════════════════════════════════════════════════

    def chain_wait_msg(self, cid: str) -> MsgLookup:
        """Wait for a message; the exit code is left for the caller to check."""
        return self.chain.wait_msg(cid)

    def chain_head(self) -> int:
        return self.chain.height

    def chain_mine(self, blocks: int = 1) -> int:
        """Advance the devnet chain. Returns the new height."""
        for _ in range(blocks):
            self.chain.mine()
        return self.chain.height

    def wallet_new(self) -> str:
        address = self.wallet.new_address()
        if self.faucet_amount:
            self.chain.fund(address, self.faucet_amount)
        return address

    def wallet_list(self) -> List[str]:
        return self.wallet.addresses()

    def wallet_balance(self, address: str) -> int:
        return self.chain.balance(address)

    def fund_wallet(self):
        """Give every wallet address the faucet amount (devnet start-up)."""
        for address in self.wallet.addresses():
            self.chain.fund(address, self.faucet_amount)


"""
paych - Development chain

In-memory chain with accounts and payment-channel actors. Messages are
queued by push_message() and executed in order when a block is mined.
Used by the local node and the test-suite; a production deployment talks
to a real chain node instead.
"""

import copy
import logging
from typing import Dict, List, Optional

from web3 import Web3

from .evaluator import SpendReason, VoucherEvaluator
from .paych_types import (
    ChannelState, ExitCode, LaneState, Message, MessageReceipt, Method,
    MsgLookup, SignedVoucher, short,
)

log = logging.getLogger(__name__)

# System actor that creates payment channels
INIT_ACTOR_ADDR = "0x0000000000000000000000000000000000000001"

DEFAULT_SETTLE_DELAY = 10

# Voucher rejection -> receipt exit code
REASON_EXIT_CODES = {
    SpendReason.CHANNEL_NOT_ACTIVE: ExitCode.ERR_NOT_FOUND,
    SpendReason.WRONG_CHANNEL: ExitCode.ERR_ILLEGAL_ARGUMENT,
    SpendReason.INVALID_SIGNATURE: ExitCode.ERR_ILLEGAL_ARGUMENT,
    SpendReason.CHANNEL_SETTLED: ExitCode.ERR_ILLEGAL_STATE,
    SpendReason.TIME_LOCKED: ExitCode.ERR_ILLEGAL_ARGUMENT,
    SpendReason.SECRET_MISMATCH: ExitCode.ERR_ILLEGAL_ARGUMENT,
    SpendReason.STALE_NONCE: ExitCode.ERR_ILLEGAL_ARGUMENT,
    SpendReason.NEGATIVE_BALANCE: ExitCode.ERR_ILLEGAL_ARGUMENT,
    SpendReason.EXCEEDS_BALANCE: ExitCode.ERR_INSUFFICIENT_FUNDS,
}


class ChainError(Exception):
    """Chain query failed."""


class ActorError(Exception):
    """Actor method aborted; state changes are discarded."""
    def __init__(self, exit_code: ExitCode, message: str):
        self.exit_code = exit_code
        self.message = message
        super().__init__(f"{message} (exit code {int(exit_code)})")


def channel_address(creator: str, nonce: int) -> str:
    """Deterministic address of the channel created by creator's nonce-th message."""
    digest = Web3.solidity_keccak(["address", "uint64"], [creator, nonce])
    return Web3.to_checksum_address(bytes(digest)[-20:])


class LocalChain:
    """
    In-memory chain.

    Usage:
        chain = LocalChain(settle_delay=10)
        chain.fund(alice, 1000)

        cid = chain.push_message(Message(alice, INIT_ACTOR_ADDR, Method.CREATE_CHANNEL,
                                         value=100, params={"to": bob}))
        lookup = chain.wait_msg(cid)   # mines the pending block
        ch = lookup.receipt.return_value
    """

    def __init__(self, settle_delay: int = DEFAULT_SETTLE_DELAY,
                 evaluator: Optional[VoucherEvaluator] = None):
        self.settle_delay = settle_delay
        self.evaluator = evaluator or VoucherEvaluator()
        self.height = 0
        self.balances: Dict[str, int] = {}
        self.nonces: Dict[str, int] = {}
        self.channels: Dict[str, ChannelState] = {}
        self.pending: List[Message] = []
        self.receipts: Dict[str, MsgLookup] = {}

    # ═══════════════════════════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════════════════════════

    def balance(self, address: str) -> int:
        """Account balance (channels report their escrow)."""
        if address in self.channels:
            return self.channels[address].balance
        return self.balances.get(address, 0)

    def channel_state(self, channel_addr: str) -> Optional[ChannelState]:
        """Copy of the channel actor state, None if no such channel."""
        state = self.channels.get(channel_addr)
        return copy.deepcopy(state) if state is not None else None

    def fund(self, address: str, amount: int):
        """Mint funds into an account (devnet faucet)."""
        if amount < 0:
            raise ValueError("amount must not be negative")
        self.balances[address] = self.balances.get(address, 0) + amount
        log.debug(f"Funded {short(address)} with {amount}")

    # ═══════════════════════════════════════════════════════════════════════
    # MESSAGES
    # ═══════════════════════════════════════════════════════════════════════

    def push_message(self, msg: Message) -> str:
        """
        Queue a message for the next block.

        The sender's next nonce is assigned here.

        Returns:
            Message cid
        """
        msg = copy.deepcopy(msg)
        msg.nonce = self._next_nonce(msg.from_addr)
        cid = msg.cid()
        self.pending.append(msg)
        log.info(f"Message {short(cid)} queued: {msg.method.name} "
                 f"{short(msg.from_addr)} -> {short(msg.to_addr)} value={msg.value}")
        return cid

    def _next_nonce(self, address: str) -> int:
        pending = sum(1 for m in self.pending if m.from_addr == address)
        return self.nonces.get(address, 0) + pending

    def mine(self) -> List[MsgLookup]:
        """Execute all pending messages in a new block."""
        self.height += 1
        executed = []
        pending, self.pending = self.pending, []
        for msg in pending:
            receipt = self._apply(msg, self.height)
            lookup = MsgLookup(cid=msg.cid(), height=self.height, receipt=receipt)
            self.receipts[lookup.cid] = lookup
            executed.append(lookup)
            if receipt.exit_code != ExitCode.OK:
                log.warning(f"Message {short(lookup.cid)} failed: {receipt.error} "
                            f"(exit code {receipt.exit_code})")
        log.debug(f"Mined block {self.height} with {len(executed)} message(s)")
        return executed

    def wait_msg(self, cid: str) -> MsgLookup:
        """
        Block until a message is executed and return where.

        Pending messages are mined on demand.
        """
        if cid in self.receipts:
            return self.receipts[cid]
        if any(m.cid() == cid for m in self.pending):
            self.mine()
            return self.receipts[cid]
        raise ChainError(f"message {cid} not found")

    def call(self, msg: Message) -> MessageReceipt:
        """Dry-run a message against the next block without committing."""
        snapshot = (copy.deepcopy(self.balances), copy.deepcopy(self.channels))
        try:
            return self._apply(copy.deepcopy(msg), self.height + 1, commit_nonce=False)
        finally:
            self.balances, self.channels = snapshot

    # ═══════════════════════════════════════════════════════════════════════
    # EXECUTION
    # ═══════════════════════════════════════════════════════════════════════

    def _apply(self, msg: Message, height: int, commit_nonce: bool = True) -> MessageReceipt:
        """Execute one message; failures roll back everything but the nonce."""
        if commit_nonce:
            self.nonces[msg.from_addr] = self.nonces.get(msg.from_addr, 0) + 1

        if msg.value < 0:
            return MessageReceipt(ExitCode.SYS_ERR_SENDER_INVALID, error="negative value")
        if self.balances.get(msg.from_addr, 0) < msg.value:
            return MessageReceipt(ExitCode.SYS_ERR_INSUFFICIENT_FUNDS,
                                  error="not enough funds to send value")

        balances = copy.deepcopy(self.balances)
        channels = copy.deepcopy(self.channels)
        try:
            result = self._invoke(msg, height)
        except ActorError as e:
            self.balances, self.channels = balances, channels
            return MessageReceipt(int(e.exit_code), error=e.message)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self.balances, self.channels = balances, channels
            log.warning(f"Message to {short(msg.to_addr)} aborted: {e!r}")
            return MessageReceipt(ExitCode.ERR_ILLEGAL_ARGUMENT, error=f"invalid message params: {e}")
        return MessageReceipt(ExitCode.OK, return_value=result)

    def _invoke(self, msg: Message, height: int):
        if msg.method == Method.SEND:
            self._transfer(msg.from_addr, msg.to_addr, msg.value)
            return None
        if msg.method == Method.CREATE_CHANNEL:
            return self._create_channel(msg)

        state = self.channels.get(msg.to_addr)
        if state is None:
            raise ActorError(ExitCode.ERR_NOT_FOUND, f"no payment channel at {msg.to_addr}")
        if msg.value:
            self.balances[msg.from_addr] -= msg.value
            state.balance += msg.value

        if msg.method == Method.UPDATE_CHANNEL_STATE:
            return self._update_channel_state(state, msg, height)
        if msg.method == Method.SETTLE:
            return self._settle(state, msg, height)
        if msg.method == Method.COLLECT:
            return self._collect(state, msg, height)
        raise ActorError(ExitCode.SYS_ERR_INVALID_METHOD, f"invalid method {msg.method}")

    def _transfer(self, from_addr: str, to_addr: str, amount: int):
        self.balances[from_addr] -= amount
        self.balances[to_addr] = self.balances.get(to_addr, 0) + amount

    def _create_channel(self, msg: Message) -> str:
        if msg.to_addr != INIT_ACTOR_ADDR:
            raise ActorError(ExitCode.ERR_ILLEGAL_ARGUMENT, "channels are created by the init actor")
        to_addr = msg.params.get("to")
        if not to_addr or not Web3.is_address(to_addr):
            raise ActorError(ExitCode.ERR_ILLEGAL_ARGUMENT, "invalid channel recipient")
        to_addr = Web3.to_checksum_address(to_addr)
        if to_addr == msg.from_addr:
            raise ActorError(ExitCode.ERR_ILLEGAL_ARGUMENT, "channel recipient must differ from sender")

        ch = channel_address(msg.from_addr, msg.nonce)
        self.balances[msg.from_addr] -= msg.value
        self.channels[ch] = ChannelState(
            channel_addr=ch,
            from_addr=msg.from_addr,
            to_addr=to_addr,
            balance=msg.value
        )
        log.info(f"Channel {short(ch)} created: {short(msg.from_addr)} -> {short(to_addr)}, "
                 f"escrow {msg.value}")
        return ch

    @staticmethod
    def _require_party(state: ChannelState, sender: str):
        if sender not in (state.from_addr, state.to_addr):
            raise ActorError(ExitCode.ERR_FORBIDDEN, "sender is not a channel party")

    def _update_channel_state(self, state: ChannelState, msg: Message, height: int) -> None:
        self._require_party(state, msg.from_addr)
        try:
            sv = SignedVoucher.from_dict(msg.params["voucher"])
        except (KeyError, TypeError, ValueError) as e:
            raise ActorError(ExitCode.ERR_ILLEGAL_ARGUMENT, f"failed to decode voucher: {e}")

        result = self.evaluator.check_spendable(state.channel_addr, sv, state, height,
                                                secret=msg.params.get("secret") or None)
        if not result.spendable:
            raise ActorError(REASON_EXIT_CODES[result.reason], result.detail)

        lane = state.lane(sv.lane)
        state.to_send += sv.amount - lane.redeemed
        state.lanes[sv.lane] = LaneState(redeemed=sv.amount, nonce=sv.nonce)
        log.info(f"Channel {short(state.channel_addr)} lane {sv.lane} redeemed {sv.amount} "
                 f"(nonce {sv.nonce}), to_send={state.to_send}")
        return None

    def _settle(self, state: ChannelState, msg: Message, height: int) -> int:
        self._require_party(state, msg.from_addr)
        if state.collected:
            raise ActorError(ExitCode.ERR_ILLEGAL_STATE, "channel already collected")
        if state.settling_at:
            raise ActorError(ExitCode.ERR_ILLEGAL_STATE, "channel already settling")
        state.settling_at = height + self.settle_delay
        log.info(f"Channel {short(state.channel_addr)} settling at height {state.settling_at}")
        return state.settling_at

    def _collect(self, state: ChannelState, msg: Message, height: int) -> str:
        self._require_party(state, msg.from_addr)
        if state.collected:
            raise ActorError(ExitCode.ERR_ILLEGAL_STATE, "channel already collected")
        if not state.settling_at or height < state.settling_at:
            raise ActorError(ExitCode.ERR_FORBIDDEN, "payment channel not settling or settled")

        refund = state.balance - state.to_send
        self.balances[state.to_addr] = self.balances.get(state.to_addr, 0) + state.to_send
        self.balances[state.from_addr] = self.balances.get(state.from_addr, 0) + refund
        log.info(f"Channel {short(state.channel_addr)} collected: {state.to_send} to "
                 f"{short(state.to_addr)}, {refund} back to {short(state.from_addr)}")
        paid = state.to_send
        state.balance = 0
        state.collected = True
        return str(paid)

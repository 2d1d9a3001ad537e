"""
paych - Payment channel voucher management

Off-chain vouchers, on-chain settlement.

Architecture:
  - Vouchers are signed OFF-CHAIN by the channel's payer and stored by
    both sides (ChannelStore)
  - Spendability is decided against the ON-CHAIN channel state
    (VoucherEvaluator)
  - Redemption is an UpdateChannelState message (SubmissionPipeline)
  - PaychManager ties them together and is served over JSON-RPC by the
    node; the `paych` CLI is a thin client of that API

Usage:
    from paych import LocalChain, Wallet, ChannelStore, PaychManager

    chain = LocalChain()
    wallet = Wallet()
    mgr = PaychManager(chain, wallet, ChannelStore(), faucet_amount=1000)

    alice, bob = mgr.wallet_new(), mgr.wallet_new()
    ch = mgr.paych_create(alice, bob, 500)
    sv = mgr.paych_voucher_create(ch, 100, lane=0)
    print(sv.encoded_string())
"""

from .paych_types import (
    SignedVoucher, LaneState, ChannelState, ChannelInfo, Direction,
    Message, MessageReceipt, MsgLookup, Method, ExitCode, VoucherDecodeError,
)
from .address import AddressError, AmountError, parse_address, parse_amount
from .wallet import Wallet, WalletError, recover_signer
from .store import ChannelStore, ChannelNotFoundError, StoreError
from .evaluator import (
    VoucherEvaluator, Evaluation, SpendReason, VoucherError,
    NoSpendableVoucherError, select_best,
)
from .chain import LocalChain, ChainError
from .submitter import SubmissionPipeline, MessageExecutionError, check_receipt
from .manager import PaychManager
from .rpc_client import FullNodeClient, RPCError

__version__ = "0.1.0"
__all__ = [
    # Types
    "SignedVoucher", "LaneState", "ChannelState", "ChannelInfo", "Direction",
    "Message", "MessageReceipt", "MsgLookup", "Method", "ExitCode",
    # Parsing
    "parse_address", "parse_amount",
    # Core
    "Wallet", "ChannelStore", "VoucherEvaluator", "Evaluation", "SpendReason",
    "select_best", "LocalChain", "SubmissionPipeline", "check_receipt",
    "PaychManager", "FullNodeClient",
    # Errors
    "VoucherDecodeError", "AddressError", "AmountError", "WalletError",
    "ChannelNotFoundError", "StoreError", "VoucherError",
    "NoSpendableVoucherError", "ChainError", "MessageExecutionError",
    "RPCError",
]

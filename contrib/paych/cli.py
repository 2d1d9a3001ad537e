"""
paych - Command-line front end

Parses arguments, validates addresses and amounts locally and delegates
everything else to the node's Paych API.

Usage:
    paych create <from> <to> <amount>
    paych list
    paych voucher create <channel> <amount> [--lane N]
    paych voucher check <channel> <voucher>
    paych voucher add <channel> <voucher>
    paych voucher list <channel>
    paych voucher best-spendable <channel>
    paych voucher submit <channel> <voucher>
    paych node
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .address import parse_address, parse_amount
from .config import LOG_LEVELS, Config, ConfigError, load_config
from .evaluator import NoSpendableVoucherError, VoucherError, select_best
from .paych_types import SignedVoucher
from .rpc_client import FullNodeClient, RPCError
from .submitter import MessageExecutionError, check_receipt
from .wallet import WalletError

log = logging.getLogger(__name__)


class CLIError(Exception):
    """Bad command-line usage."""


USER_ERRORS = (
    CLIError, ValueError, RPCError, VoucherError, NoSpendableVoucherError,
    MessageExecutionError, ConfigError, WalletError,
)


def get_full_node_api(args) -> FullNodeClient:
    """API client for the configured node."""
    config: Config = args.cfg
    return FullNodeClient(config.api_url, token=config.api_token, timeout=config.timeout)


def require_args(args, count: int, message: str) -> List[str]:
    if len(args.args) != count:
        raise CLIError(message)
    return args.args


# ============ CHANNEL COMMANDS ============

def cmd_create(args):
    """Create a new payment channel."""
    from_s, to_s, amount_s = require_args(args, 3, "must pass three arguments: <from> <to> <amount>")

    try:
        from_addr = parse_address(from_s)
    except ValueError as e:
        raise CLIError(f"failed to parse from address: {e}")
    try:
        to_addr = parse_address(to_s)
    except ValueError as e:
        raise CLIError(f"failed to parse to address: {e}")
    try:
        amount = parse_amount(amount_s)
    except ValueError as e:
        raise CLIError(f"parsing amount failed: {e}")

    api = get_full_node_api(args)
    print(api.paych_create(from_addr, to_addr, amount))


def cmd_list(args):
    """List all locally registered payment channels."""
    api = get_full_node_api(args)
    for ch in api.paych_list():
        print(ch)


def cmd_status(args):
    """Show tracking info and on-chain state of a channel."""
    (ch_s,) = require_args(args, 1, "must pass payment channel address")
    ch = parse_address(ch_s)
    api = get_full_node_api(args)
    print(json.dumps(api.paych_status(ch), indent=2))


def cmd_allocate_lane(args):
    """Reserve a new lane on a channel."""
    (ch_s,) = require_args(args, 1, "must pass payment channel address")
    ch = parse_address(ch_s)
    api = get_full_node_api(args)
    print(api.paych_allocate_lane(ch))


def cmd_settle(args):
    """Start settling a channel."""
    (ch_s,) = require_args(args, 1, "must pass payment channel address")
    ch = parse_address(ch_s)
    api = get_full_node_api(args)
    lookup = check_receipt(api.chain_wait_msg(api.paych_settle(ch)))
    print(f"channel settling, collectable at height {lookup.receipt.return_value}")


def cmd_collect(args):
    """Collect the funds of a settled channel."""
    (ch_s,) = require_args(args, 1, "must pass payment channel address")
    ch = parse_address(ch_s)
    api = get_full_node_api(args)
    lookup = check_receipt(api.chain_wait_msg(api.paych_collect(ch)))
    print(f"channel collected, paid out {lookup.receipt.return_value}")


# ============ VOUCHER COMMANDS ============

def cmd_voucher_create(args):
    """Create a signed payment channel voucher."""
    ch_s, amount_s = require_args(args, 2, "must pass two arguments: <channel> <amount>")
    ch = parse_address(ch_s)
    amount = parse_amount(amount_s)
    if args.lane < 0:
        raise CLIError("lane must not be negative")

    api = get_full_node_api(args)
    sv = api.paych_voucher_create(ch, amount, args.lane)
    print(sv.encoded_string())


def cmd_voucher_check(args):
    """Check validity of payment channel voucher."""
    ch_s, sv_s = require_args(args, 2, "must pass payment channel address and voucher to validate")
    ch = parse_address(ch_s)
    sv = SignedVoucher.decode(sv_s)

    api = get_full_node_api(args)
    api.paych_voucher_check_valid(ch, sv)
    print("voucher is valid")


def cmd_voucher_add(args):
    """Add payment channel voucher to local datastore."""
    ch_s, sv_s = require_args(args, 2, "must pass payment channel address and voucher")
    ch = parse_address(ch_s)
    sv = SignedVoucher.decode(sv_s)

    api = get_full_node_api(args)
    api.paych_voucher_add(ch, sv)


def cmd_voucher_list(args):
    """List stored vouchers for a given payment channel."""
    (ch_s,) = require_args(args, 1, "must pass payment channel address")
    ch = parse_address(ch_s)

    api = get_full_node_api(args)
    for sv in api.paych_voucher_list(ch):
        print(f"Lane {sv.lane}, Nonce {sv.nonce}: {sv.amount}")


def cmd_voucher_best_spendable(args):
    """Print voucher with highest value that is currently spendable."""
    (ch_s,) = require_args(args, 1, "must pass payment channel address")
    ch = parse_address(ch_s)

    api = get_full_node_api(args)
    vouchers = api.paych_voucher_list(ch)
    best = select_best(vouchers, lambda sv: api.paych_voucher_check_spendable(ch, sv))

    print(best.encoded_string())
    print(f"Amount: {best.amount}")


def cmd_voucher_submit(args):
    """Submit voucher to chain to update payment channel state."""
    ch_s, sv_s = require_args(args, 2, "must pass payment channel address and voucher")
    ch = parse_address(ch_s)
    sv = SignedVoucher.decode(sv_s)

    api = get_full_node_api(args)
    cid = api.paych_voucher_submit(ch, sv, args.secret)
    check_receipt(api.chain_wait_msg(cid))
    print("channel updated successfully")


# ============ WALLET / CHAIN COMMANDS ============

def cmd_wallet_new(args):
    api = get_full_node_api(args)
    print(api.wallet_new())


def cmd_wallet_list(args):
    api = get_full_node_api(args)
    for address in api.wallet_list():
        print(address)


def cmd_wallet_balance(args):
    (addr_s,) = require_args(args, 1, "must pass address")
    address = parse_address(addr_s)
    api = get_full_node_api(args)
    print(api.wallet_balance(address))


def cmd_chain_head(args):
    api = get_full_node_api(args)
    print(api.chain_head())


def cmd_chain_mine(args):
    if args.blocks < 1:
        raise CLIError("blocks must be positive")
    api = get_full_node_api(args)
    print(api.chain_mine(args.blocks))


def cmd_node(args):
    """Serve the Paych API on a devnet chain."""
    from .server import serve

    config: Config = args.cfg
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.settle_delay is not None:
        config.settle_delay = args.settle_delay
    if args.faucet is not None:
        config.faucet_amount = args.faucet
    serve(config)


# ============ MAIN ============

def _positional(parser: argparse.ArgumentParser):
    # Argument counts are checked by each command so the messages stay exact
    parser.add_argument("args", nargs="*", help=argparse.SUPPRESS)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="paych", description="Manage payment channels")
    parser.add_argument("--api-url", help="Node API URL (default from config)")
    parser.add_argument("--token", help="Node API token")
    parser.add_argument("--config", help="Path to config.json")
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="Log level")
    parser.set_defaults(func=None, parser=parser)
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    create_parser = subparsers.add_parser("create", help="Create a new payment channel")
    _positional(create_parser)
    create_parser.set_defaults(func=cmd_create)

    list_parser = subparsers.add_parser("list", help="List all locally registered payment channels")
    list_parser.set_defaults(func=cmd_list)

    status_parser = subparsers.add_parser("status", help="Show payment channel status")
    _positional(status_parser)
    status_parser.set_defaults(func=cmd_status)

    lane_parser = subparsers.add_parser("allocate-lane", help="Allocate a new lane on a channel")
    _positional(lane_parser)
    lane_parser.set_defaults(func=cmd_allocate_lane)

    settle_parser = subparsers.add_parser("settle", help="Start settling a payment channel")
    _positional(settle_parser)
    settle_parser.set_defaults(func=cmd_settle)

    collect_parser = subparsers.add_parser("collect", help="Collect funds of a settled channel")
    _positional(collect_parser)
    collect_parser.set_defaults(func=cmd_collect)

    # voucher commands
    voucher_parser = subparsers.add_parser("voucher", help="Interact with payment channel vouchers")
    voucher_parser.set_defaults(parser=voucher_parser)
    voucher_sub = voucher_parser.add_subparsers(dest="voucher_command")

    v_create = voucher_sub.add_parser("create", help="Create a signed payment channel voucher")
    _positional(v_create)
    v_create.add_argument("--lane", type=int, default=0, help="specify payment channel lane to use")
    v_create.set_defaults(func=cmd_voucher_create)

    v_check = voucher_sub.add_parser("check", help="Check validity of payment channel voucher")
    _positional(v_check)
    v_check.set_defaults(func=cmd_voucher_check)

    v_add = voucher_sub.add_parser("add", help="Add payment channel voucher to local datastore")
    _positional(v_add)
    v_add.set_defaults(func=cmd_voucher_add)

    v_list = voucher_sub.add_parser("list", help="List stored vouchers for a given payment channel")
    _positional(v_list)
    v_list.set_defaults(func=cmd_voucher_list)

    v_best = voucher_sub.add_parser("best-spendable",
                                    help="Print voucher with highest value that is currently spendable")
    _positional(v_best)
    v_best.set_defaults(func=cmd_voucher_best_spendable)

    v_submit = voucher_sub.add_parser("submit", help="Submit voucher to chain to update payment channel state")
    _positional(v_submit)
    v_submit.add_argument("--secret", default="", help="secret preimage for hash-locked vouchers (hex)")
    v_submit.set_defaults(func=cmd_voucher_submit)

    # wallet commands
    wallet_parser = subparsers.add_parser("wallet", help="Manage node wallet addresses")
    wallet_parser.set_defaults(parser=wallet_parser)
    wallet_sub = wallet_parser.add_subparsers(dest="wallet_command")
    wallet_sub.add_parser("new", help="Generate a new address").set_defaults(func=cmd_wallet_new)
    wallet_sub.add_parser("list", help="List wallet addresses").set_defaults(func=cmd_wallet_list)
    w_balance = wallet_sub.add_parser("balance", help="Show address balance")
    _positional(w_balance)
    w_balance.set_defaults(func=cmd_wallet_balance)

    # chain commands
    chain_parser = subparsers.add_parser("chain", help="Inspect the devnet chain")
    chain_parser.set_defaults(parser=chain_parser)
    chain_sub = chain_parser.add_subparsers(dest="chain_command")
    chain_sub.add_parser("head", help="Print current height").set_defaults(func=cmd_chain_head)
    c_mine = chain_sub.add_parser("mine", help="Mine blocks on the devnet chain")
    c_mine.add_argument("--blocks", type=int, default=1, help="number of blocks (default: 1)")
    c_mine.set_defaults(func=cmd_chain_mine)

    # node
    node_parser = subparsers.add_parser("node", help="Run a devnet node serving the Paych API")
    node_parser.add_argument("--host", help="Listen address")
    node_parser.add_argument("--port", type=int, help="Listen port")
    node_parser.add_argument("--settle-delay", type=int, help="Settling window in blocks")
    node_parser.add_argument("--faucet", type=int, help="Devnet funds per wallet address")
    node_parser.set_defaults(func=cmd_node)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.func is None:
        args.parser.print_help()
        return 1

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    if args.api_url:
        config.api_url = args.api_url
    if args.token:
        config.api_token = args.token
    if args.log_level:
        config.log_level = args.log_level
    args.cfg = config

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    try:
        args.func(args)
    except USER_ERRORS as e:
        log.debug(f"{args.command} failed: {e!r}")
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())

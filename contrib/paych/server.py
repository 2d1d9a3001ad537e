"""
paych - Node server

JSON-RPC 2.0 endpoint exposing PaychManager over HTTP.

Endpoints:
  POST /rpc/v0   - JSON-RPC (PaychCreate, PaychVoucherCreate, ...)
  GET  /health   - Liveness and chain height
"""

import logging
import os
import threading
from typing import Any, Callable, Dict, Optional

from flask import Flask, jsonify, request

from .address import parse_address, parse_amount
from .chain import ChainError, LocalChain
from .config import Config
from .evaluator import NoSpendableVoucherError, VoucherError
from .manager import PaychManager
from .paych_types import MsgLookup, SignedVoucher
from .store import ChannelNotFoundError, ChannelStore, StoreError
from .submitter import MessageExecutionError
from .wallet import Wallet, WalletError, mask_secret

log = logging.getLogger(__name__)

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Application error codes
ERR_VOUCHER_INVALID = 1
ERR_CHANNEL_NOT_FOUND = 2
ERR_EXECUTION_FAILED = 3
ERR_NO_SPENDABLE_VOUCHER = 4
ERR_WALLET = 5
ERR_CHAIN = 6

ERROR_CODES = [
    (VoucherError, ERR_VOUCHER_INVALID),
    (ChannelNotFoundError, ERR_CHANNEL_NOT_FOUND),
    (MessageExecutionError, ERR_EXECUTION_FAILED),
    (NoSpendableVoucherError, ERR_NO_SPENDABLE_VOUCHER),
    (WalletError, ERR_WALLET),
    (ChainError, ERR_CHAIN),
    (StoreError, INTERNAL_ERROR),
    (ValueError, INVALID_PARAMS),
    (KeyError, INVALID_PARAMS),
    (IndexError, INVALID_PARAMS),
    (TypeError, INVALID_PARAMS),
]

RPC_METHODS: Dict[str, Callable[[PaychManager, list], Any]] = {}


def rpc_method(name: str):
    """Register a handler for a JSON-RPC method."""
    def register(func):
        RPC_METHODS[name] = func
        return func
    return register


def _voucher(value) -> SignedVoucher:
    """Voucher param: dict form or encoded string."""
    if isinstance(value, str):
        return SignedVoucher.decode(value)
    if not isinstance(value, dict):
        raise ValueError("voucher must be an object or encoded string")
    return SignedVoucher.from_dict(value)


def _param(params: list, index: int, default=None):
    return params[index] if len(params) > index else default


def _secret(params: list, index: int) -> Optional[str]:
    """Optional hex preimage param."""
    secret = _param(params, index)
    if secret is not None and not isinstance(secret, str):
        raise ValueError("secret must be a hex string")
    return secret or None


# =============================================================================
# METHODS
# =============================================================================

@rpc_method("PaychCreate")
def _paych_create(mgr: PaychManager, params: list):
    return mgr.paych_create(parse_address(params[0]), parse_address(params[1]),
                            parse_amount(params[2]))


@rpc_method("PaychList")
def _paych_list(mgr: PaychManager, params: list):
    return mgr.paych_list()


@rpc_method("PaychStatus")
def _paych_status(mgr: PaychManager, params: list):
    return mgr.paych_status(parse_address(params[0]))


@rpc_method("PaychAllocateLane")
def _paych_allocate_lane(mgr: PaychManager, params: list):
    return mgr.paych_allocate_lane(parse_address(params[0]))


@rpc_method("PaychSettle")
def _paych_settle(mgr: PaychManager, params: list):
    return mgr.paych_settle(parse_address(params[0]))


@rpc_method("PaychCollect")
def _paych_collect(mgr: PaychManager, params: list):
    return mgr.paych_collect(parse_address(params[0]))


@rpc_method("PaychVoucherCreate")
def _paych_voucher_create(mgr: PaychManager, params: list):
    lane = int(_param(params, 2, 0))
    if lane < 0:
        raise ValueError("lane must not be negative")
    sv = mgr.paych_voucher_create(parse_address(params[0]), parse_amount(params[1]), lane)
    return sv.to_dict()


@rpc_method("PaychVoucherCheckValid")
def _paych_voucher_check_valid(mgr: PaychManager, params: list):
    mgr.paych_voucher_check_valid(parse_address(params[0]), _voucher(params[1]))
    return None


@rpc_method("PaychVoucherCheckSpendable")
def _paych_voucher_check_spendable(mgr: PaychManager, params: list):
    return mgr.paych_voucher_check_spendable(parse_address(params[0]), _voucher(params[1]),
                                             _secret(params, 2))


@rpc_method("PaychVoucherAdd")
def _paych_voucher_add(mgr: PaychManager, params: list):
    mgr.paych_voucher_add(parse_address(params[0]), _voucher(params[1]))
    return None


@rpc_method("PaychVoucherList")
def _paych_voucher_list(mgr: PaychManager, params: list):
    return [sv.to_dict() for sv in mgr.paych_voucher_list(parse_address(params[0]))]


@rpc_method("PaychVoucherSubmit")
def _paych_voucher_submit(mgr: PaychManager, params: list):
    return mgr.paych_voucher_submit(parse_address(params[0]), _voucher(params[1]),
                                    _secret(params, 2))


@rpc_method("ChainWaitMsg")
def _chain_wait_msg(mgr: PaychManager, params: list):
    lookup: MsgLookup = mgr.chain_wait_msg(str(params[0]))
    return lookup.to_dict()


@rpc_method("ChainHead")
def _chain_head(mgr: PaychManager, params: list):
    return mgr.chain_head()


@rpc_method("ChainMine")
def _chain_mine(mgr: PaychManager, params: list):
    blocks = int(_param(params, 0, 1))
    if blocks < 1:
        raise ValueError("blocks must be positive")
    return mgr.chain_mine(blocks)


@rpc_method("WalletNew")
def _wallet_new(mgr: PaychManager, params: list):
    return mgr.wallet_new()


@rpc_method("WalletList")
def _wallet_list(mgr: PaychManager, params: list):
    return mgr.wallet_list()


@rpc_method("WalletBalance")
def _wallet_balance(mgr: PaychManager, params: list):
    return str(mgr.wallet_balance(parse_address(params[0])))


# =============================================================================
# FLASK APP
# =============================================================================

def _error(req_id, code: int, message: str):
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


def dispatch(mgr: PaychManager, payload: Any) -> dict:
    """Run one JSON-RPC request against the manager."""
    if not isinstance(payload, dict) or "method" not in payload:
        return _error(None, INVALID_REQUEST, "invalid request")

    req_id = payload.get("id")
    method = payload["method"]
    params = payload.get("params") or []
    if not isinstance(params, list):
        return _error(req_id, INVALID_PARAMS, "params must be a list")

    handler = RPC_METHODS.get(method)
    if handler is None:
        return _error(req_id, METHOD_NOT_FOUND, f"method not found: {method}")

    try:
        result = handler(mgr, params)
    except Exception as e:
        for exc_type, code in ERROR_CODES:
            if isinstance(e, exc_type):
                log.info(f"{method} failed: {e}")
                return _error(req_id, code, str(e))
        log.exception(f"{method} crashed")
        return _error(req_id, INTERNAL_ERROR, f"internal error: {e}")

    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def create_app(mgr: PaychManager, token: str = "") -> Flask:
    """
    Build the Flask app serving mgr.

    Args:
        mgr: Manager to expose
        token: Required bearer token ("" disables auth)
    """
    app = Flask(__name__)
    lock = threading.Lock()

    @app.route('/health')
    def health():
        return jsonify({'ok': True, 'height': mgr.chain_head()})

    @app.route('/rpc/v0', methods=['POST'])
    def rpc():
        if token and request.headers.get('Authorization', '') != f"Bearer {token}":
            log.warning(f"Rejected RPC from {request.remote_addr}: bad token")
            return jsonify(_error(None, INVALID_REQUEST, 'unauthorized')), 401

        payload = request.get_json(silent=True)
        if payload is None:
            return jsonify(_error(None, PARSE_ERROR, 'parse error')), 400

        with lock:
            return jsonify(dispatch(mgr, payload))

    return app


def build_devnet_manager(config: Config) -> PaychManager:
    """Manager on a fresh in-memory chain, wallet keys kept in the repo."""
    keystore = os.path.join(config.repo_path, "keystore.json")
    wallet = Wallet(keystore)
    store = ChannelStore(config.store_path or None)
    chain = LocalChain(settle_delay=config.settle_delay)
    mgr = PaychManager(chain, wallet, store, faucet_amount=config.faucet_amount)
    mgr.fund_wallet()
    return mgr


def serve(config: Config):
    """Run the devnet node until interrupted."""
    mgr = build_devnet_manager(config)
    app = create_app(mgr, config.api_token)

    log.info("=" * 60)
    log.info("paych node starting...")
    log.info(f"  Listen: http://{config.host}:{config.port}/rpc/v0")
    log.info(f"  Repo: {config.repo_path}")
    log.info(f"  Auth token: {mask_secret(config.api_token) if config.api_token else 'disabled'}")
    log.info(f"  Settle delay: {config.settle_delay} blocks")
    for address in mgr.wallet_list():
        log.info(f"  Wallet: {address} balance={mgr.wallet_balance(address)}")
    log.info("=" * 60)

    app.run(host=config.host, port=config.port, threaded=True)

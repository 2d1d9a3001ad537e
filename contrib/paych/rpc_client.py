"""
paych - RPC Client

JSON-RPC client for the full-node Paych API.
"""

import logging
from typing import Any, List, Optional

import requests

from .paych_types import MsgLookup, SignedVoucher

log = logging.getLogger(__name__)


class RPCError(Exception):
    """RPC call failed."""
    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class FullNodeClient:
    """
    JSON-RPC client for a paych node.

    Usage:
        api = FullNodeClient("http://127.0.0.1:1234/rpc/v0", token="...")
        channels = api.paych_list()
        sv = api.paych_voucher_create(channels[0], 100, lane=0)
    """

    def __init__(self, url: str = "http://127.0.0.1:1234/rpc/v0",
                 token: str = "", timeout: int = 30):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._id = 0

    def _call(self, method: str, params: list = None) -> Any:
        """Make RPC call."""
        self._id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._id,
            "method": method,
            "params": params or []
        }
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        log.debug(f"RPC -> {method} ({len(payload['params'])} param(s))")
        try:
            response = requests.post(
                self.url,
                json=payload,
                headers=headers,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise RPCError(-1, f"Connection failed: {e}")

        if response.status_code == 401:
            raise RPCError(401, "unauthorized: check the API token")
        try:
            result = response.json()
        except ValueError:
            raise RPCError(response.status_code,
                           f"invalid response from node (HTTP {response.status_code})")

        if "error" in result and result["error"]:
            raise RPCError(result["error"].get("code", -1), result["error"].get("message", ""))
        if response.status_code >= 400:
            raise RPCError(response.status_code, f"HTTP {response.status_code}")

        return result.get("result")

    # ═══════════════════════════════════════════════════════════════════════
    # CHANNELS
    # ═══════════════════════════════════════════════════════════════════════

    def paych_create(self, from_addr: str, to_addr: str, amount: int) -> str:
        """Create a channel and return its address."""
        return self._call("PaychCreate", [from_addr, to_addr, str(amount)])

    def paych_list(self) -> List[str]:
        """All locally tracked channels."""
        return self._call("PaychList") or []

    def paych_status(self, channel_addr: str) -> dict:
        return self._call("PaychStatus", [channel_addr])

    def paych_allocate_lane(self, channel_addr: str) -> int:
        return int(self._call("PaychAllocateLane", [channel_addr]))

    def paych_settle(self, channel_addr: str) -> str:
        return self._call("PaychSettle", [channel_addr])

    def paych_collect(self, channel_addr: str) -> str:
        return self._call("PaychCollect", [channel_addr])

    # ═══════════════════════════════════════════════════════════════════════
    # VOUCHERS
    # ═══════════════════════════════════════════════════════════════════════

    def paych_voucher_create(self, channel_addr: str, amount: int, lane: int = 0) -> SignedVoucher:
        """Create a signed voucher."""
        data = self._call("PaychVoucherCreate", [channel_addr, str(amount), lane])
        return SignedVoucher.from_dict(data)

    def paych_voucher_check_valid(self, channel_addr: str, sv: SignedVoucher) -> None:
        """Raises RPCError with the reason if the voucher is invalid."""
        self._call("PaychVoucherCheckValid", [channel_addr, sv.to_dict()])

    def paych_voucher_check_spendable(self, channel_addr: str, sv: SignedVoucher,
                                      secret: Optional[str] = None) -> bool:
        return bool(self._call("PaychVoucherCheckSpendable",
                               [channel_addr, sv.to_dict(), secret or ""]))

    def paych_voucher_add(self, channel_addr: str, sv: SignedVoucher) -> None:
        self._call("PaychVoucherAdd", [channel_addr, sv.to_dict()])

    def paych_voucher_list(self, channel_addr: str) -> List[SignedVoucher]:
        data = self._call("PaychVoucherList", [channel_addr]) or []
        return [SignedVoucher.from_dict(v) for v in data]

    def paych_voucher_submit(self, channel_addr: str, sv: SignedVoucher,
                             secret: Optional[str] = None) -> str:
        """Send a voucher to the chain; returns the message cid."""
        return self._call("PaychVoucherSubmit", [channel_addr, sv.to_dict(), secret or ""])

    # ═══════════════════════════════════════════════════════════════════════
    # CHAIN / WALLET
    # ═══════════════════════════════════════════════════════════════════════

    def chain_wait_msg(self, cid: str) -> MsgLookup:
        return MsgLookup.from_dict(self._call("ChainWaitMsg", [cid]))

    def chain_head(self) -> int:
        return int(self._call("ChainHead"))

    def chain_mine(self, blocks: int = 1) -> int:
        return int(self._call("ChainMine", [blocks]))

    def wallet_new(self) -> str:
        return self._call("WalletNew")

    def wallet_list(self) -> List[str]:
        return self._call("WalletList") or []

    def wallet_balance(self, address: str) -> int:
        return int(self._call("WalletBalance", [address]))

    def test_connection(self) -> bool:
        """Test if RPC connection works."""
        try:
            self.chain_head()
            return True
        except RPCError:
            return False

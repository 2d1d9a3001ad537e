"""
paych - Data Types

Voucher, channel and message structures shared by the engine, the node
and the CLI.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional
import base64
import binascii
import json

from web3 import Web3


ZERO_HASH = "0x" + "00" * 32


class VoucherDecodeError(ValueError):
    """Encoded voucher string could not be decoded."""


class Direction(Enum):
    """Channel direction: OUTBOUND = we pay, INBOUND = we get paid"""
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class Method(IntEnum):
    """Payment-channel actor methods"""
    SEND = 0
    CREATE_CHANNEL = 2
    UPDATE_CHANNEL_STATE = 3
    SETTLE = 4
    COLLECT = 5


class ExitCode(IntEnum):
    """Message receipt exit codes"""
    OK = 0
    SYS_ERR_SENDER_INVALID = 1
    SYS_ERR_INVALID_METHOD = 3
    SYS_ERR_INSUFFICIENT_FUNDS = 6
    ERR_ILLEGAL_ARGUMENT = 16
    ERR_NOT_FOUND = 17
    ERR_FORBIDDEN = 18
    ERR_INSUFFICIENT_FUNDS = 19
    ERR_ILLEGAL_STATE = 20


@dataclass
class SignedVoucher:
    """
    Signed, off-chain promise of payment on one lane of a channel.

    Structure:
      - channel_addr: Payment channel address
      - lane: Lane the voucher pays on
      - nonce: Must be strictly greater than the lane's redeemed nonce
      - amount: Cumulative amount owed on this lane (base units)
      - time_lock: Chain height before which the voucher cannot be redeemed
      - secret_hash: SHA-256 (hex) of a preimage the redeemer must reveal
      - signature: Recoverable signature of the channel's from-address
    """
    channel_addr: str
    lane: int
    nonce: int
    amount: int
    time_lock: int = 0
    secret_hash: str = ""
    signature: str = ""

    def __post_init__(self):
        if self.lane < 0:
            raise ValueError("lane must not be negative")
        if self.nonce < 0:
            raise ValueError("nonce must not be negative")
        if self.amount < 0:
            raise ValueError("amount must not be negative")
        if self.time_lock < 0:
            raise ValueError("time_lock must not be negative")

    def signing_bytes(self) -> bytes:
        """Digest the from-address signs (everything except the signature)."""
        secret_hash = self.secret_hash or ZERO_HASH
        if not secret_hash.startswith("0x"):
            secret_hash = "0x" + secret_hash
        return bytes(Web3.solidity_keccak(
            ["address", "uint64", "uint64", "uint256", "uint64", "bytes32"],
            [Web3.to_checksum_address(self.channel_addr), self.lane, self.nonce, self.amount,
             self.time_lock, secret_hash]
        ))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "channel_addr": self.channel_addr,
            "lane": self.lane,
            "nonce": self.nonce,
            "amount": str(self.amount),
            "time_lock": self.time_lock,
            "secret_hash": self.secret_hash,
            "signature": self.signature
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SignedVoucher":
        """
        Create SignedVoucher from dictionary.

        The channel address is checksummed so the same voucher always
        compares equal whatever case it arrived in.
        """
        for key in ("channel_addr", "secret_hash", "signature"):
            if not isinstance(data.get(key, ""), str):
                raise TypeError(f"{key} must be a string")
        return cls(
            channel_addr=Web3.to_checksum_address(data["channel_addr"]),
            lane=int(data["lane"]),
            nonce=int(data["nonce"]),
            amount=int(data["amount"]),
            time_lock=int(data.get("time_lock", 0)),
            secret_hash=data.get("secret_hash", ""),
            signature=data.get("signature", "")
        )

    def encoded_string(self) -> str:
        """URL-safe base64 of the canonical JSON form (no padding)."""
        raw = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return base64.urlsafe_b64encode(raw.encode()).rstrip(b"=").decode()

    @classmethod
    def decode(cls, encoded: str) -> "SignedVoucher":
        """Decode a voucher produced by encoded_string()."""
        encoded = encoded.strip()
        if not encoded:
            raise VoucherDecodeError("empty voucher string")
        padded = encoded + "=" * (-len(encoded) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded.encode())
            data = json.loads(raw)
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise VoucherDecodeError(f"failed to decode voucher: {e}")
        if not isinstance(data, dict):
            raise VoucherDecodeError("failed to decode voucher: not an object")
        try:
            return cls.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise VoucherDecodeError(f"failed to decode voucher: {e}")


@dataclass
class LaneState:
    """Redeemed state of one lane on chain"""
    redeemed: int = 0
    nonce: int = 0

    def to_dict(self) -> dict:
        return {"redeemed": str(self.redeemed), "nonce": self.nonce}

    @classmethod
    def from_dict(cls, data: dict) -> "LaneState":
        return cls(redeemed=int(data.get("redeemed", 0)), nonce=int(data.get("nonce", 0)))


@dataclass
class ChannelState:
    """
    On-chain payment channel actor state.

    to_send is the cumulative amount owed to the recipient across all lanes
    and never exceeds balance (the escrowed funds).
    """
    channel_addr: str
    from_addr: str
    to_addr: str
    balance: int
    to_send: int = 0
    lanes: Dict[int, LaneState] = field(default_factory=dict)
    settling_at: int = 0
    collected: bool = False

    def lane(self, lane_id: int) -> LaneState:
        """Lane state, or a fresh one if the lane has never been redeemed."""
        return self.lanes.get(lane_id, LaneState())

    def to_dict(self) -> dict:
        return {
            "channel_addr": self.channel_addr,
            "from_addr": self.from_addr,
            "to_addr": self.to_addr,
            "balance": str(self.balance),
            "to_send": str(self.to_send),
            "lanes": {str(k): v.to_dict() for k, v in self.lanes.items()},
            "settling_at": self.settling_at,
            "collected": self.collected
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChannelState":
        return cls(
            channel_addr=data["channel_addr"],
            from_addr=data["from_addr"],
            to_addr=data["to_addr"],
            balance=int(data["balance"]),
            to_send=int(data.get("to_send", 0)),
            lanes={int(k): LaneState.from_dict(v) for k, v in data.get("lanes", {}).items()},
            settling_at=int(data.get("settling_at", 0)),
            collected=bool(data.get("collected", False))
        )


@dataclass
class ChannelInfo:
    """
    Locally tracked payment channel.

    control_addr is our side of the channel (the payer for OUTBOUND
    channels, the payee for INBOUND ones); target_addr is the other side.
    """
    channel_addr: str
    control_addr: str
    target_addr: str
    direction: Direction
    next_lane: int = 0
    vouchers: List[SignedVoucher] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "channel_addr": self.channel_addr,
            "control_addr": self.control_addr,
            "target_addr": self.target_addr,
            "direction": self.direction.value,
            "next_lane": self.next_lane,
            "vouchers": [v.to_dict() for v in self.vouchers]
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChannelInfo":
        return cls(
            channel_addr=data["channel_addr"],
            control_addr=data["control_addr"],
            target_addr=data["target_addr"],
            direction=Direction(data["direction"]),
            next_lane=int(data.get("next_lane", 0)),
            vouchers=[SignedVoucher.from_dict(v) for v in data.get("vouchers", [])]
        )


@dataclass
class Message:
    """Chain message (value transfer plus actor method call)"""
    from_addr: str
    to_addr: str
    method: Method
    value: int = 0
    params: Dict[str, Any] = field(default_factory=dict)
    nonce: int = 0

    def to_dict(self) -> dict:
        return {
            "from_addr": self.from_addr,
            "to_addr": self.to_addr,
            "method": int(self.method),
            "value": str(self.value),
            "params": self.params,
            "nonce": self.nonce
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            from_addr=data["from_addr"],
            to_addr=data["to_addr"],
            method=Method(int(data["method"])),
            value=int(data.get("value", 0)),
            params=data.get("params", {}),
            nonce=int(data.get("nonce", 0))
        )

    def cid(self) -> str:
        """Content identifier: keccak of the canonical JSON form."""
        raw = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return "0x" + bytes(Web3.keccak(text=raw)).hex()


@dataclass
class MessageReceipt:
    """Result of executing a message"""
    exit_code: int
    return_value: Any = None
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "exit_code": int(self.exit_code),
            "return_value": self.return_value,
            "error": self.error
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MessageReceipt":
        return cls(
            exit_code=int(data["exit_code"]),
            return_value=data.get("return_value"),
            error=data.get("error", "")
        )


@dataclass
class MsgLookup:
    """Where and how a message was executed"""
    cid: str
    height: int
    receipt: MessageReceipt

    def to_dict(self) -> dict:
        return {"cid": self.cid, "height": self.height, "receipt": self.receipt.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "MsgLookup":
        return cls(
            cid=data["cid"],
            height=int(data["height"]),
            receipt=MessageReceipt.from_dict(data["receipt"])
        )


def short(value: Optional[str], size: int = 10) -> str:
    """Shorten an address or hash for log lines."""
    if not value:
        return ""
    if len(value) <= size + 3:
        return value
    return f"{value[:size]}..."

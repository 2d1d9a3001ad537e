"""
paych - Channel Registry and Voucher Store

Locally known payment channels and the signed vouchers received or issued
on them, persisted as one JSON document.
"""

import json
import logging
import os
import time
from typing import Dict, List, Optional

from .paych_types import ChannelInfo, Direction, SignedVoucher, short

log = logging.getLogger(__name__)


class StoreError(Exception):
    """Store could not be read or written."""


class ChannelNotFoundError(Exception):
    """Channel is not tracked locally."""
    def __init__(self, channel_addr: str):
        self.channel_addr = channel_addr
        super().__init__(f"channel {channel_addr} not found")


class ChannelStore:
    """
    Channel registry plus per-channel voucher store.

    Channels are keyed by address. Vouchers are kept per channel in the
    order they were added; within a lane they are distinguished by nonce.

    Usage:
        store = ChannelStore("/path/to/paych.json")

        store.track_channel("0xCh...", "0xFrom...", "0xTo...", Direction.OUTBOUND)
        store.add_voucher("0xCh...", sv)
        nonce = store.next_nonce("0xCh...", lane=0)
    """

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize store.

        Args:
            storage_path: Path of the JSON file, None for in-memory only
        """
        self.storage_path = storage_path
        self.channels: Dict[str, ChannelInfo] = {}
        self._load_channels()

    def _load_channels(self):
        """Load channels from storage."""
        if not self.storage_path or not os.path.exists(self.storage_path):
            return
        try:
            with open(self.storage_path, "r") as f:
                data = json.load(f)
            for ch_data in data.get("channels", []):
                info = ChannelInfo.from_dict(ch_data)
                self.channels[info.channel_addr] = info
        except (OSError, ValueError, KeyError) as e:
            raise StoreError(f"failed to load channels from {self.storage_path}: {e}")
        log.debug(f"Loaded {len(self.channels)} channel(s) from {self.storage_path}")

    def _save_channels(self):
        """Save channels to storage."""
        if not self.storage_path:
            return
        data = {
            "version": "1.0",
            "updated_ts": int(time.time()),
            "channels": [info.to_dict() for info in self.channels.values()]
        }
        directory = os.path.dirname(self.storage_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.storage_path + ".tmp"
        try:
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.storage_path)
        except OSError as e:
            raise StoreError(f"failed to save channels to {self.storage_path}: {e}")

    # ═══════════════════════════════════════════════════════════════════════
    # CHANNEL REGISTRY
    # ═══════════════════════════════════════════════════════════════════════

    def track_channel(self, channel_addr: str, control_addr: str,
                      target_addr: str, direction: Direction) -> ChannelInfo:
        """
        Start tracking a channel. Tracking a known channel is a no-op.

        Returns:
            The tracked ChannelInfo
        """
        existing = self.channels.get(channel_addr)
        if existing is not None:
            return existing

        info = ChannelInfo(
            channel_addr=channel_addr,
            control_addr=control_addr,
            target_addr=target_addr,
            direction=direction
        )
        self.channels[channel_addr] = info
        self._save_channels()
        log.info(f"Tracking {direction.value} channel {short(channel_addr)}")
        return info

    def has_channel(self, channel_addr: str) -> bool:
        return channel_addr in self.channels

    def get_channel(self, channel_addr: str) -> ChannelInfo:
        """Get channel by address."""
        info = self.channels.get(channel_addr)
        if info is None:
            raise ChannelNotFoundError(channel_addr)
        return info

    def list_channels(self) -> List[str]:
        """Addresses of all tracked channels."""
        return list(self.channels.keys())

    def allocate_lane(self, channel_addr: str) -> int:
        """Reserve the next unused lane on a channel."""
        info = self.get_channel(channel_addr)
        lane = info.next_lane
        info.next_lane += 1
        self._save_channels()
        return lane

    # ═══════════════════════════════════════════════════════════════════════
    # VOUCHER STORE
    # ═══════════════════════════════════════════════════════════════════════

    def add_voucher(self, channel_addr: str, sv: SignedVoucher) -> bool:
        """
        Store a voucher.

        Returns:
            True if stored, False if the exact voucher was already known
        """
        info = self.get_channel(channel_addr)
        if sv in info.vouchers:
            return False

        info.vouchers.append(sv)
        # Lanes used by received vouchers must never be allocated again
        if sv.lane >= info.next_lane:
            info.next_lane = sv.lane + 1
        self._save_channels()
        log.debug(f"Stored voucher lane={sv.lane} nonce={sv.nonce} amount={sv.amount} "
                  f"on {short(channel_addr)}")
        return True

    def list_vouchers(self, channel_addr: str) -> List[SignedVoucher]:
        """Vouchers for a channel in the order they were added."""
        return list(self.get_channel(channel_addr).vouchers)

    def lane_vouchers(self, channel_addr: str, lane: int) -> List[SignedVoucher]:
        """Vouchers on one lane, sorted by nonce."""
        vouchers = [v for v in self.get_channel(channel_addr).vouchers if v.lane == lane]
        vouchers.sort(key=lambda v: v.nonce)
        return vouchers

    def next_nonce(self, channel_addr: str, lane: int) -> int:
        """Nonce for the next voucher on a lane (one above the highest stored)."""
        vouchers = self.lane_vouchers(channel_addr, lane)
        if not vouchers:
            return 1
        return vouchers[-1].nonce + 1

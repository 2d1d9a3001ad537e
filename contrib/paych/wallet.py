"""
paych - Wallet

secp256k1 keys for channel parties. Vouchers are signed by the channel's
from-address as EIP-191 messages over SignedVoucher.signing_bytes().
"""

import json
import logging
import os
import time
from typing import Dict, List, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from .paych_types import SignedVoucher, short

log = logging.getLogger(__name__)


class WalletError(Exception):
    """Wallet operation failed."""


def mask_secret(secret: str, visible_prefix: int = 8, visible_suffix: int = 4) -> str:
    """Mask a private key, preimage or API token for log output."""
    if not secret or len(secret) <= visible_prefix + visible_suffix:
        return "***"
    return f"{secret[:visible_prefix]}...{secret[-visible_suffix:]}"


def recover_signer(sv: SignedVoucher) -> Optional[str]:
    """
    Recover the address that signed a voucher.

    Returns:
        Checksummed signer address, or None if the signature is missing
        or malformed
    """
    if not sv.signature:
        return None
    sig = sv.signature[2:] if sv.signature.startswith("0x") else sv.signature
    try:
        signature = bytes.fromhex(sig)
        message = encode_defunct(primitive=sv.signing_bytes())
        return Account.recover_message(message, signature=signature)
    except Exception as e:
        log.debug(f"Signature recovery failed for voucher on {short(sv.channel_addr)}: {e}")
        return None


class Wallet:
    """
    Key store for the addresses this node controls.

    Keys live in a JSON file (or only in memory when no path is given).

    Usage:
        wallet = Wallet("/path/to/keystore.json")
        addr = wallet.new_address()
        sv.signature = wallet.sign_voucher(addr, sv)
    """

    def __init__(self, keystore_path: Optional[str] = None):
        """
        Initialize wallet.

        Args:
            keystore_path: Path of the JSON keystore, None for in-memory
        """
        self.keystore_path = keystore_path
        self._keys: Dict[str, str] = {}
        self._load_keys()

    def _load_keys(self):
        """Load keys from the keystore file."""
        if not self.keystore_path or not os.path.exists(self.keystore_path):
            return
        try:
            with open(self.keystore_path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise WalletError(f"failed to load keystore {self.keystore_path}: {e}")
        for key in data.get("keys", []):
            account = Account.from_key(key)
            self._keys[account.address] = key
        log.debug(f"Loaded {len(self._keys)} key(s) from {self.keystore_path}")

    def _save_keys(self):
        """Save keys to the keystore file."""
        if not self.keystore_path:
            return
        data = {
            "version": "1.0",
            "updated_ts": int(time.time()),
            "keys": list(self._keys.values())
        }
        directory = os.path.dirname(self.keystore_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.keystore_path + ".tmp"
        try:
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.keystore_path)
        except OSError as e:
            raise WalletError(f"failed to save keystore {self.keystore_path}: {e}")

    def new_address(self) -> str:
        """Generate a new key and return its address."""
        account = Account.create()
        key = "0x" + bytes(account.key).hex()
        self._keys[account.address] = key
        self._save_keys()
        log.info(f"New wallet address {account.address} (key {mask_secret(key)})")
        return account.address

    def import_key(self, private_key: str) -> str:
        """Import a hex private key and return its address."""
        try:
            account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise WalletError(f"invalid private key: {e}")
        self._keys[account.address] = "0x" + bytes(account.key).hex()
        self._save_keys()
        return account.address

    def addresses(self) -> List[str]:
        """All addresses this wallet holds keys for."""
        return list(self._keys.keys())

    def has_key(self, address: str) -> bool:
        return address in self._keys

    def sign_voucher(self, address: str, sv: SignedVoucher) -> str:
        """
        Sign a voucher with the key for address.

        Args:
            address: Signing address (the channel's from-address)
            sv: Voucher to sign (its signature field is ignored)

        Returns:
            Signature as 0x-prefixed hex
        """
        key = self._keys.get(address)
        if key is None:
            raise WalletError(f"no key for address {address}")
        message = encode_defunct(primitive=sv.signing_bytes())
        signed = Account.sign_message(message, private_key=key)
        return "0x" + bytes(signed.signature).hex()

"""
paych - Submission Pipeline

Turns a voucher into an on-chain UpdateChannelState message, pushes it and
waits for execution. A non-zero exit status is terminal and never retried.
"""

import logging
from typing import Optional

from .paych_types import Message, Method, MsgLookup, SignedVoucher, short

log = logging.getLogger(__name__)


class MessageExecutionError(Exception):
    """Message was included on chain but its execution failed."""
    def __init__(self, exit_code: int, cid: str = "", error: str = ""):
        self.exit_code = int(exit_code)
        self.cid = cid
        self.error = error
        super().__init__(f"message execution failed (exit code {exit_code})")


def check_receipt(lookup: MsgLookup) -> MsgLookup:
    """
    Raise MessageExecutionError unless the message executed successfully.

    Returns:
        The lookup, for chaining
    """
    if lookup.receipt.exit_code != 0:
        raise MessageExecutionError(lookup.receipt.exit_code, lookup.cid, lookup.receipt.error)
    return lookup


class SubmissionPipeline:
    """
    Settlement message submission.

    Usage:
        pipeline = SubmissionPipeline(chain)

        cid = pipeline.submit(our_addr, ch, sv)
        lookup = pipeline.wait(cid)        # raises MessageExecutionError

        # Or both at once
        lookup = pipeline.submit_and_wait(our_addr, ch, sv)
    """

    def __init__(self, chain):
        """
        Initialize pipeline.

        Args:
            chain: Chain with push_message() and wait_msg()
        """
        self.chain = chain

    @staticmethod
    def build_message(from_addr: str, channel_addr: str, sv: SignedVoucher,
                      secret: Optional[str] = None) -> Message:
        """Build the UpdateChannelState message redeeming sv."""
        params = {"voucher": sv.to_dict()}
        if secret:
            params["secret"] = secret
        return Message(
            from_addr=from_addr,
            to_addr=channel_addr,
            method=Method.UPDATE_CHANNEL_STATE,
            value=0,
            params=params
        )

    def push(self, msg: Message) -> str:
        """Push any message and return its cid."""
        return self.chain.push_message(msg)

    def wait(self, cid: str) -> MsgLookup:
        """Wait for a message and surface its exit status."""
        lookup = self.chain.wait_msg(cid)
        log.debug(f"Message {short(cid)} executed at height {lookup.height} "
                  f"with exit code {lookup.receipt.exit_code}")
        return check_receipt(lookup)

    def push_and_wait(self, msg: Message) -> MsgLookup:
        return self.wait(self.push(msg))

    def submit(self, from_addr: str, channel_addr: str, sv: SignedVoucher,
               secret: Optional[str] = None) -> str:
        """Send a voucher to the chain and return the message cid."""
        msg = self.build_message(from_addr, channel_addr, sv, secret)
        cid = self.push(msg)
        log.info(f"Submitted voucher lane={sv.lane} nonce={sv.nonce} amount={sv.amount} "
                 f"for {short(channel_addr)} in {short(cid)}")
        return cid

    def submit_and_wait(self, from_addr: str, channel_addr: str, sv: SignedVoucher,
                        secret: Optional[str] = None) -> MsgLookup:
        return self.wait(self.submit(from_addr, channel_addr, sv, secret))

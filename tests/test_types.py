"""Tests for voucher, channel and message data types."""

import base64
import json

import pytest

from paych import ChannelState, LaneState, Message, Method, SignedVoucher, VoucherDecodeError

CH = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"


def test_encoded_string_round_trip():
    sv = SignedVoucher(channel_addr=CH, lane=3, nonce=7, amount=12345678901234567890,
                       time_lock=42, secret_hash="ab" * 32, signature="0x" + "cd" * 65)

    encoded = sv.encoded_string()

    assert "=" not in encoded
    assert SignedVoucher.decode(encoded) == sv


def test_amount_travels_as_string():
    sv = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=2 ** 80)
    assert sv.to_dict()["amount"] == str(2 ** 80)
    assert SignedVoucher.from_dict(sv.to_dict()).amount == 2 ** 80


@pytest.mark.parametrize("encoded", [
    "",
    "   ",
    "not-base64!!",
    base64.urlsafe_b64encode(b"[1, 2, 3]").decode(),
    base64.urlsafe_b64encode(b"{\"lane\": 0}").decode(),
    base64.urlsafe_b64encode(json.dumps({
        "channel_addr": CH, "lane": -1, "nonce": 1, "amount": "5"
    }).encode()).decode(),
])
def test_decode_rejects_garbage(encoded):
    with pytest.raises(VoucherDecodeError):
        SignedVoucher.decode(encoded)


def test_negative_fields_rejected():
    with pytest.raises(ValueError):
        SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=-1)
    with pytest.raises(ValueError):
        SignedVoucher(channel_addr=CH, lane=0, nonce=-1, amount=1)


def test_signing_bytes_cover_payload_not_signature():
    sv = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=100)
    signed = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=100, signature="0x1234")
    more = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=101)

    assert len(sv.signing_bytes()) == 32
    assert sv.signing_bytes() == signed.signing_bytes()
    assert sv.signing_bytes() != more.signing_bytes()


def test_signing_bytes_accept_lowercase_channel():
    sv = SignedVoucher(channel_addr=CH.lower(), lane=0, nonce=1, amount=100)
    assert sv.signing_bytes() == SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=100).signing_bytes()


def test_channel_state_dict_round_trip():
    state = ChannelState(channel_addr=CH, from_addr=CH, to_addr=CH, balance=500, to_send=120,
                         lanes={0: LaneState(redeemed=100, nonce=4), 2: LaneState(redeemed=20, nonce=1)},
                         settling_at=9)

    restored = ChannelState.from_dict(json.loads(json.dumps(state.to_dict())))

    assert restored == state
    assert restored.lane(5) == LaneState()


def test_message_cid_depends_on_nonce():
    msg = Message(from_addr=CH, to_addr=CH, method=Method.SETTLE)
    other = Message(from_addr=CH, to_addr=CH, method=Method.SETTLE, nonce=1)

    assert msg.cid() == Message.from_dict(msg.to_dict()).cid()
    assert msg.cid() != other.cid()
    assert msg.cid().startswith("0x")


def test_from_dict_checksums_channel_address():
    data = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=5).to_dict()
    data["channel_addr"] = CH.lower()
    assert SignedVoucher.from_dict(data).channel_addr == CH


@pytest.mark.parametrize("key,value", [
    ("channel_addr", 12345),
    ("secret_hash", 7),
    ("signature", ["0x"]),
])
def test_from_dict_rejects_non_string_fields(key, value):
    data = SignedVoucher(channel_addr=CH, lane=0, nonce=1, amount=5).to_dict()
    data[key] = value
    with pytest.raises(TypeError):
        SignedVoucher.from_dict(data)

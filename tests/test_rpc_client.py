"""Tests for the JSON-RPC client, with requests.post faked."""

import pytest
import requests

from paych import FullNodeClient, RPCError, SignedVoucher

CH = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"


class FakeResponse:
    def __init__(self, body=None, status_code=200):
        self._body = body
        self.status_code = status_code

    def json(self):
        if self._body is None:
            raise ValueError("no JSON")
        return self._body


@pytest.fixture
def calls(monkeypatch):
    """Record posted requests; the test sets calls.response."""
    class Recorder(list):
        response = FakeResponse({"jsonrpc": "2.0", "id": 1, "result": None})

    recorder = Recorder()

    def fake_post(url, json=None, headers=None, timeout=None):
        recorder.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if isinstance(recorder.response, Exception):
            raise recorder.response
        return recorder.response

    monkeypatch.setattr(requests, "post", fake_post)
    return recorder


def test_payload_and_auth_header(calls):
    calls.response = FakeResponse({"jsonrpc": "2.0", "id": 1, "result": CH})
    api = FullNodeClient("http://node:1234/rpc/v0", token="secret", timeout=5)

    assert api.paych_create(CH, CH, 10 ** 20) == CH

    sent = calls[0]
    assert sent["url"] == "http://node:1234/rpc/v0"
    assert sent["headers"] == {"Authorization": "Bearer secret"}
    assert sent["timeout"] == 5
    assert sent["json"]["method"] == "PaychCreate"
    assert sent["json"]["params"] == [CH, CH, str(10 ** 20)]


def test_no_token_no_header(calls):
    FullNodeClient().paych_list()
    assert calls[0]["headers"] == {}
    assert calls[0]["json"]["params"] == []


def test_request_ids_increase(calls):
    api = FullNodeClient()
    api.paych_list()
    api.paych_list()
    assert [c["json"]["id"] for c in calls] == [1, 2]


def test_voucher_results_are_decoded(calls):
    sv = SignedVoucher(channel_addr=CH, lane=2, nonce=3, amount=40, signature="0xab")
    calls.response = FakeResponse({"jsonrpc": "2.0", "id": 1, "result": [sv.to_dict()]})

    assert FullNodeClient().paych_voucher_list(CH) == [sv]


def test_error_message_passed_through(calls):
    calls.response = FakeResponse({"jsonrpc": "2.0", "id": 1,
                                   "error": {"code": 1, "message": "nonce too low (1 <= 2)"}})
    with pytest.raises(RPCError) as exc:
        FullNodeClient().paych_voucher_add(CH, SignedVoucher(CH, 0, 1, 1))
    assert exc.value.code == 1
    assert str(exc.value) == "nonce too low (1 <= 2)"


def test_connection_failure(calls):
    calls.response = requests.exceptions.ConnectionError("refused")
    api = FullNodeClient()

    with pytest.raises(RPCError) as exc:
        api.chain_head()
    assert exc.value.code == -1
    assert "Connection failed" in str(exc.value)
    assert api.test_connection() is False


def test_unauthorized(calls):
    calls.response = FakeResponse({"error": "unauthorized"}, status_code=401)
    with pytest.raises(RPCError) as exc:
        FullNodeClient(token="wrong").paych_list()
    assert exc.value.code == 401


def test_non_json_response(calls):
    calls.response = FakeResponse(None, status_code=502)
    with pytest.raises(RPCError) as exc:
        FullNodeClient().paych_list()
    assert exc.value.code == 502

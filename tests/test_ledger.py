from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest
from solders.keypair import Keypair

from ledger.anchor import AnchorClient, AnchorState, load_keypair
from ledger.rpc import LedgerRpcClient, LedgerRpcError
from models.records import ReadingPayload
from services.errors import AnchorError, ConfigurationError
from services.fingerprint import reading_fingerprint


def _reading(co2: float = 5.0) -> ReadingPayload:
    return ReadingPayload(
        sensor_id=7,
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        co2=co2,
        temperature=21.3,
    )


def test_rpc_sends_json_rpc_envelope() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"value": 42}})

    client = LedgerRpcClient("http://ledger.test", transport=httpx.MockTransport(handler))
    try:
        assert client.get_balance("payer") == 42
    finally:
        client.close()

    assert seen[0]["jsonrpc"] == "2.0"
    assert seen[0]["method"] == "getBalance"
    assert seen[0]["params"] == ["payer"]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"message": "boom"}}),
        httpx.Response(200, json={"jsonrpc": "2.0", "id": 1}),
        httpx.Response(200, json=[1, 2]),
    ],
)
def test_rpc_failures_raise_ledger_error(response: httpx.Response) -> None:
    client = LedgerRpcClient(
        "http://ledger.test", transport=httpx.MockTransport(lambda _request: response)
    )
    try:
        with pytest.raises(LedgerRpcError):
            client.get_version()
    finally:
        client.close()


def test_rpc_transport_errors_raise_ledger_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = LedgerRpcClient("http://ledger.test", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(LedgerRpcError):
            client.get_latest_blockhash()
    finally:
        client.close()


def test_load_keypair_round_trip(keypair: Keypair) -> None:
    assert load_keypair(json.dumps(list(bytes(keypair)))).pubkey() == keypair.pubkey()


@pytest.mark.parametrize("raw", ["", "[1, 2, 3]", "{}", "not json"])
def test_load_keypair_rejects_malformed_input(raw: str) -> None:
    with pytest.raises(ConfigurationError):
        load_keypair(raw)


def test_memo_is_protocol_tagged(anchor: AnchorClient) -> None:
    reading = _reading()

    assert anchor.memo_for(reading) == f"pollution:v1:{reading_fingerprint(reading)}"


def test_submit_sends_signed_memo_transaction(anchor: AnchorClient, ledger) -> None:
    reading = _reading()

    signature = anchor.submit(reading)

    assert ledger.memos == [anchor.memo_for(reading)]
    assert signature in ledger.logs
    assert ledger.calls == ["getLatestBlockhash", "sendTransaction"]


def test_verify_finds_memo_in_transaction_logs(anchor: AnchorClient) -> None:
    reading = _reading()
    signature = anchor.submit(reading)

    assert anchor.verify(reading, signature) is True
    assert anchor.verify(_reading(co2=5.01), signature) is False


def test_verify_unknown_or_malformed_signature(anchor: AnchorClient, keypair: Keypair) -> None:
    reading = _reading()
    unknown = str(keypair.sign_message(b"never sent"))

    assert anchor.verify(reading, unknown) is False
    assert anchor.verify(reading, "not-a-signature") is False


def test_submit_maps_rpc_failure_to_anchor_error(anchor: AnchorClient, ledger) -> None:
    ledger.failing.add("sendTransaction")

    with pytest.raises(AnchorError):
        anchor.submit(_reading())

    ledger.failing = {"getLatestBlockhash"}
    with pytest.raises(AnchorError):
        anchor.submit(_reading())
    assert ledger.submissions == 1


def test_status_reports_confirmation(anchor: AnchorClient, ledger, keypair: Keypair) -> None:
    signature = anchor.submit(_reading())

    assert anchor.status(signature) is AnchorState.confirmed

    ledger.statuses[signature] = {"confirmationStatus": "processed", "err": None}
    assert anchor.status(signature) is AnchorState.unconfirmed

    ledger.statuses[signature] = {"confirmationStatus": "finalized", "err": {"InstructionError": []}}
    assert anchor.status(signature) is AnchorState.rejected

    assert anchor.status(str(keypair.sign_message(b"other"))) is AnchorState.unconfirmed


def test_ensure_funded_checks_minimum(anchor: AnchorClient, ledger) -> None:
    assert anchor.ensure_funded() == ledger.balance

    ledger.balance = 1_000_000
    with pytest.raises(AnchorError):
        anchor.ensure_funded()

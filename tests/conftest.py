from __future__ import annotations

import base64
import json
from dataclasses import replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

import httpx
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.transaction import Transaction

from sqlalchemy import func, select

from datastore.sql_store import ReadingRow, SqlStore
from ledger.anchor import AnchorClient
from ledger.rpc import LedgerRpcClient
from services.runtime import Services, build_services
from settings import Settings


class FakeLedger:
    """In-memory JSON-RPC node that records memo transactions."""

    def __init__(self, balance: int = 5_000_000) -> None:
        self.balance = balance
        self.blockhash = str(Hash.new_unique())
        self.logs: Dict[str, List[str]] = {}
        self.statuses: Dict[str, Optional[Dict[str, Any]]] = {}
        self.memos: List[str] = []
        self.failing: Set[str] = set()
        self.calls: List[str] = []
        self.on_send: Optional[Callable[[], None]] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        self.calls.append(method)
        if method in self.failing:
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": body["id"],
                    "error": {"code": -32005, "message": "Node is unhealthy"},
                },
            )
        result = getattr(self, f"_{method}")(body["params"])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def submissions(self) -> int:
        return self.calls.count("sendTransaction")

    def _getVersion(self, _params: List[Any]) -> Dict[str, Any]:
        return {"solana-core": "1.18.0", "feature-set": 1}

    def _getBalance(self, _params: List[Any]) -> Dict[str, Any]:
        return {"context": {"slot": 1}, "value": self.balance}

    def _getLatestBlockhash(self, _params: List[Any]) -> Dict[str, Any]:
        return {
            "context": {"slot": 1},
            "value": {"blockhash": self.blockhash, "lastValidBlockHeight": 100},
        }

    def _sendTransaction(self, params: List[Any]) -> str:
        if self.on_send is not None:
            self.on_send()
        transaction = Transaction.from_bytes(base64.b64decode(params[0]))
        memo = bytes(transaction.message.instructions[0].data).decode("utf-8")
        signature = str(transaction.signatures[0])
        self.memos.append(memo)
        self.logs[signature] = [
            "Program MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr invoke [1]",
            f'Program log: Memo (len {len(memo)}): "{memo}"',
            "Program MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr success",
        ]
        self.statuses[signature] = {"confirmationStatus": "confirmed", "err": None}
        return signature

    def _getTransaction(self, params: List[Any]) -> Optional[Dict[str, Any]]:
        logs = self.logs.get(params[0])
        if logs is None:
            return None
        return {"slot": 2, "meta": {"err": None, "logMessages": logs}}

    def _getSignatureStatuses(self, params: List[Any]) -> Dict[str, Any]:
        return {
            "context": {"slot": 2},
            "value": [self.statuses.get(signature) for signature in params[0]],
        }


def keypair_json(keypair: Keypair) -> str:
    return json.dumps(list(bytes(keypair)))


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def rpc(ledger: FakeLedger) -> Iterator[LedgerRpcClient]:
    client = LedgerRpcClient("http://ledger.test", transport=ledger.transport())
    yield client
    client.close()


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()


@pytest.fixture
def anchor(rpc: LedgerRpcClient, keypair: Keypair) -> AnchorClient:
    return AnchorClient(rpc, keypair, protocol="pollution", min_balance=1_000_000)


@pytest.fixture
def store(tmp_path) -> Iterator[SqlStore]:
    sql_store = SqlStore.from_url(f"sqlite:///{tmp_path / 'readings.db'}")
    yield sql_store
    sql_store.close()


@pytest.fixture
def reading_count(store: SqlStore) -> Callable[[int], int]:
    def count(sensor_id: int) -> int:
        with store.engine.connect() as connection:
            return connection.scalar(
                select(func.count(ReadingRow.id)).where(ReadingRow.sensor_id == sensor_id)
            )

    return count


@pytest.fixture
def settings(tmp_path, keypair: Keypair) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'readings.db'}",
        jwt_secret="test-secret",
        token_ttl_seconds=3600,
        ledger_rpc_url="http://ledger.test",
        ledger_keypair=keypair_json(keypair),
        ledger_min_balance=1_000_000,
        ledger_timeout=5.0,
        memo_protocol="pollution",
        reconcile_interval=0.0,
        log_level="INFO",
    )


@pytest.fixture
def services(settings: Settings, store: SqlStore, rpc: LedgerRpcClient) -> Services:
    return build_services(settings, store, rpc)


@pytest.fixture
def settings_factory(settings: Settings):
    def factory(**overrides: Any) -> Settings:
        return replace(settings, **overrides)

    return factory

"""JSON-RPC transport for the ledger node."""

from __future__ import annotations

import base64
import itertools
import logging
from threading import Lock
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class LedgerRpcError(Exception):
    """Transport failure, HTTP error status or JSON-RPC error object."""


class LedgerRpcClient:
    """Thin JSON-RPC 2.0 client. Safe to share between request threads."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)
        self._ids_lock = Lock()

    def close(self) -> None:
        self._client.close()

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        with self._ids_lock:
            request_id = next(self._ids)
        body = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        try:
            response = self._client.post(self.url, json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise LedgerRpcError(f"{method} failed: {exc}") from exc
        except ValueError as exc:
            raise LedgerRpcError(f"{method} returned a non-JSON body") from exc

        if not isinstance(payload, dict):
            raise LedgerRpcError(f"{method} returned an unexpected body")
        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise LedgerRpcError(f"{method} failed: {message}")
        if "result" not in payload:
            raise LedgerRpcError(f"{method} returned no result")
        return payload["result"]

    def get_version(self) -> Dict[str, Any]:
        return self.call("getVersion")

    def get_latest_blockhash(self) -> str:
        result = self.call("getLatestBlockhash", [{"commitment": "finalized"}])
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError) as exc:
            raise LedgerRpcError("getLatestBlockhash returned an unexpected shape") from exc

    def get_balance(self, pubkey: str) -> int:
        result = self.call("getBalance", [pubkey])
        try:
            return int(result["value"])
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerRpcError("getBalance returned an unexpected shape") from exc

    def send_transaction(self, raw: bytes) -> str:
        """Submit a signed, serialized transaction. Returns once the node accepts it."""
        encoded = base64.b64encode(raw).decode("ascii")
        result = self.call("sendTransaction", [encoded, {"encoding": "base64"}])
        if not isinstance(result, str):
            raise LedgerRpcError("sendTransaction returned an unexpected shape")
        return result

    def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Return the execution record, or ``None`` while the node does not know it."""
        return self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": "confirmed",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        result = self.call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        try:
            return result["value"][0]
        except (KeyError, TypeError, IndexError) as exc:
            raise LedgerRpcError("getSignatureStatuses returned an unexpected shape") from exc

"""Anchor reading fingerprints on the ledger as memo transactions.

A submission moves through ``built -> signed -> submitted`` and then, as seen by
``status``, ends up ``unconfirmed``, ``confirmed`` or ``rejected``. ``submit``
returns as soon as the node accepts the transaction; callers that need finality
poll ``status`` or ``verify``.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Union

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from ledger.rpc import LedgerRpcClient, LedgerRpcError
from models.records import Reading, ReadingPayload
from services.errors import AnchorError, ConfigurationError
from services.fingerprint import reading_fingerprint

logger = logging.getLogger(__name__)

MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")
MEMO_VERSION = "v1"


class AnchorState(str, Enum):
    built = "built"
    signed = "signed"
    submitted = "submitted"
    unconfirmed = "unconfirmed"
    confirmed = "confirmed"
    rejected = "rejected"


def load_keypair(raw: str) -> Keypair:
    """Parse a keypair stored as a JSON array of 64 byte values."""
    message = "Ledger keypair must be a JSON array of 64 bytes."
    try:
        values = json.loads(raw)
    except ValueError as exc:
        raise ConfigurationError(message) from exc
    if not isinstance(values, list) or len(values) != 64:
        raise ConfigurationError(message)
    try:
        return Keypair.from_bytes(bytes(values))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(message) from exc


class AnchorClient:
    """Signs and submits memo transactions with one long-lived payer keypair."""

    def __init__(
        self,
        rpc: LedgerRpcClient,
        keypair: Keypair,
        protocol: str = "pollution",
        min_balance: int = 1_000_000,
    ) -> None:
        self.rpc = rpc
        self.keypair = keypair
        self.protocol = protocol
        self.min_balance = min_balance

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    def memo_for(self, reading: Union[Reading, ReadingPayload]) -> str:
        return f"{self.protocol}:{MEMO_VERSION}:{reading_fingerprint(reading)}"

    def ensure_funded(self) -> int:
        """Check once that the payer can cover fees; returns the balance."""
        try:
            balance = self.rpc.get_balance(str(self.pubkey))
        except LedgerRpcError as exc:
            raise AnchorError(f"Could not read payer balance: {exc}") from exc
        if balance <= self.min_balance:
            raise AnchorError(
                f"Insufficient balance: {balance} <= required {self.min_balance}"
            )
        logger.info("Ledger payer funded", extra={"balance": balance})
        return balance

    def build_memo_instruction(self, memo: str) -> Instruction:
        return Instruction(
            MEMO_PROGRAM_ID,
            memo.encode("utf-8"),
            [AccountMeta(self.pubkey, is_signer=True, is_writable=False)],
        )

    def submit(self, reading: Union[Reading, ReadingPayload]) -> str:
        """Sign and send the memo transaction for ``reading``; returns its signature."""
        memo = self.memo_for(reading)
        instruction = self.build_memo_instruction(memo)
        logger.debug("Memo instruction built", extra={"stage": AnchorState.built.value})

        try:
            blockhash = Hash.from_string(self.rpc.get_latest_blockhash())
        except LedgerRpcError as exc:
            raise AnchorError(f"Could not fetch latest blockhash: {exc}") from exc
        except ValueError as exc:
            raise AnchorError("Node returned a malformed blockhash") from exc

        try:
            transaction = Transaction.new_signed_with_payer(
                [instruction], self.pubkey, [self.keypair], blockhash
            )
        except Exception as exc:  # noqa: BLE001 - signer errors come from the native extension
            raise AnchorError(f"Signing failed: {exc}") from exc
        signature = str(transaction.signatures[0])
        logger.debug(
            "Transaction signed",
            extra={"stage": AnchorState.signed.value, "signature": signature},
        )

        try:
            self.rpc.send_transaction(bytes(transaction))
        except LedgerRpcError as exc:
            raise AnchorError(f"Submission failed: {exc}") from exc

        logger.info(
            "Transaction submitted",
            extra={
                "stage": AnchorState.submitted.value,
                "signature": signature,
                "sensor_id": reading.sensor_id,
            },
        )
        return signature

    def verify(self, reading: Union[Reading, ReadingPayload], signature: str) -> bool:
        """Whether the named transaction's logs carry this reading's memo.

        Needs only the reading's four field values and the signature, so it can
        be repeated by anyone without access to the reading store.
        """
        try:
            Signature.from_string(signature)
        except ValueError:
            return False

        expected = self.memo_for(reading)
        try:
            record = self.rpc.get_transaction(signature)
        except LedgerRpcError as exc:
            raise AnchorError(f"Could not fetch transaction: {exc}") from exc
        if not record:
            return False

        meta = record.get("meta") or {}
        if meta.get("err") is not None:
            return False
        for line in meta.get("logMessages") or []:
            if expected in line:
                return True
        return False

    def status(self, signature: str) -> AnchorState:
        try:
            result = self.rpc.get_signature_status(signature)
        except LedgerRpcError as exc:
            raise AnchorError(f"Could not fetch signature status: {exc}") from exc
        if result is None:
            return AnchorState.unconfirmed
        if result.get("err") is not None:
            return AnchorState.rejected
        if result.get("confirmationStatus") in {"confirmed", "finalized"}:
            return AnchorState.confirmed
        return AnchorState.unconfirmed

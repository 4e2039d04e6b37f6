"""Process-wide wiring of the store, signing material and services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache

from datastore.sql_store import SqlStore, build_default_store
from ledger.anchor import AnchorClient, load_keypair
from ledger.rpc import LedgerRpcClient, LedgerRpcError
from services.access import AccessGate
from services.accounts import AccountService
from services.errors import AnchorError, ConfigurationError
from services.ingestion import IngestionService
from services.reconciler import AnchorReconciler
from services.tokens import TokenService
from settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: SqlStore
    tokens: TokenService
    anchor: AnchorClient
    gate: AccessGate
    ingestion: IngestionService
    accounts: AccountService
    reconciler: AnchorReconciler

    def start(self) -> None:
        self.reconciler.start()

    def close(self) -> None:
        self.reconciler.stop()
        self.anchor.rpc.close()


def build_services(
    settings: Settings,
    store: SqlStore,
    rpc: LedgerRpcClient,
) -> Services:
    """Assemble the services, failing fast when signing material or funds are missing."""
    if not settings.jwt_secret:
        raise ConfigurationError("JWT_SECRET must be set.")
    if not settings.ledger_keypair:
        raise ConfigurationError("LEDGER_KEYPAIR must be set.")

    tokens = TokenService(settings.jwt_secret, ttl=timedelta(seconds=settings.token_ttl_seconds))
    anchor = AnchorClient(
        rpc,
        load_keypair(settings.ledger_keypair),
        protocol=settings.memo_protocol,
        min_balance=settings.ledger_min_balance,
    )
    try:
        version = rpc.get_version()
    except LedgerRpcError as exc:
        raise ConfigurationError(f"Ledger RPC unreachable: {exc}") from exc
    logger.info("Connected to ledger node", extra={"status": version.get("solana-core")})
    try:
        anchor.ensure_funded()
    except AnchorError as exc:
        raise ConfigurationError(str(exc)) from exc

    gate = AccessGate(store)
    return Services(
        store=store,
        tokens=tokens,
        anchor=anchor,
        gate=gate,
        ingestion=IngestionService(store, gate, anchor),
        accounts=AccountService(store, tokens),
        reconciler=AnchorReconciler(
            store,
            anchor,
            interval=settings.reconcile_interval,
            # One submission makes two RPC calls, each bounded by the timeout.
            stale_after=max(
                timedelta(minutes=10), timedelta(seconds=4 * settings.ledger_timeout)
            ),
        ),
    )


@lru_cache
def build_default_services() -> Services:
    settings = get_settings()
    rpc = LedgerRpcClient(settings.ledger_rpc_url, timeout=settings.ledger_timeout)
    try:
        return build_services(settings, build_default_store(), rpc)
    except Exception:
        rpc.close()
        raise

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_DATABASE_URL_ENV = "DATABASE_URL"
_JWT_SECRET_ENV = "JWT_SECRET"
_JWT_TTL_ENV = "JWT_TTL_SECONDS"
_LEDGER_RPC_URL_ENV = "LEDGER_RPC_URL"
_LEDGER_KEYPAIR_ENV = "LEDGER_KEYPAIR"
_LEDGER_MIN_BALANCE_ENV = "LEDGER_MIN_BALANCE"
_LEDGER_TIMEOUT_ENV = "LEDGER_RPC_TIMEOUT"
_MEMO_PROTOCOL_ENV = "MEMO_PROTOCOL"
_RECONCILE_INTERVAL_ENV = "RECONCILE_INTERVAL_SECONDS"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: Optional[str]
    token_ttl_seconds: int
    ledger_rpc_url: str
    ledger_keypair: Optional[str]
    ledger_min_balance: int
    ledger_timeout: float
    memo_protocol: str
    reconcile_interval: float
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    candidate = value.strip()
    return candidate or None


def _read_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_float_env(name: str, default: float, allow_zero: bool = False) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if parsed > 0 or (allow_zero and parsed == 0):
        return parsed
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=_read_str_env(_DATABASE_URL_ENV, "sqlite:///./tmp/readings.db"),
        jwt_secret=_read_optional_env(_JWT_SECRET_ENV),
        token_ttl_seconds=_read_int_env(_JWT_TTL_ENV, 3600),
        ledger_rpc_url=_read_str_env(_LEDGER_RPC_URL_ENV, "https://api.devnet.solana.com"),
        ledger_keypair=_read_optional_env(_LEDGER_KEYPAIR_ENV),
        ledger_min_balance=_read_int_env(_LEDGER_MIN_BALANCE_ENV, 1_000_000),
        ledger_timeout=_read_float_env(_LEDGER_TIMEOUT_ENV, 30.0),
        memo_protocol=_read_str_env(_MEMO_PROTOCOL_ENV, "pollution"),
        reconcile_interval=_read_float_env(_RECONCILE_INTERVAL_ENV, 60.0, allow_zero=True),
        log_level=_read_log_level("INFO"),
    )

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.runtime import build_default_services


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # Fails startup when the secret, keypair or payer balance is missing.
    services = build_default_services()
    services.start()
    try:
        yield
    finally:
        services.close()
        build_default_services.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Pollution Tracker",
        description="Sensor reading ingestion with fingerprints anchored on a public ledger.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()

"""API composition root."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from eth_account import Account
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from intentcast_chain.ledger import UsdcLedger
from intentcast_core.config import IntentCastSettings, load_settings
from intentcast_core.lifecycle import LedgerService, LifecycleController
from intentcast_core.matching import MatchingEngine
from intentcast_core.store import RecordStore, create_store
from intentcast_protocol.auth import WalletAuthenticator
from intentcast_protocol.client import normalize_private_key
from intentcast_protocol.fulfillment import FulfillmentFlow
from intentcast_protocol.x402 import to_legacy_network

from . import __version__
from .dependencies import ApiDependencies, get_deps
from .middleware import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimitMiddleware,
    StructuredLoggingMiddleware,
    register_exception_handlers,
    setup_logging,
)
from .routers import categories, intents, matching, offers, payments, providers

logger = logging.getLogger("intentcast.api")


def _service_wallet_address(settings: IntentCastSettings) -> str:
    """Configured address, else the address of the paying key."""
    if settings.service_wallet_address:
        return settings.service_wallet_address
    if not settings.service_wallet_private_key:
        return ""
    try:
        return Account.from_key(normalize_private_key(settings.service_wallet_private_key)).address
    except ValueError as e:
        logger.warning("Service wallet key is unusable: %s", e)
        return ""


def create_app(
    settings: IntentCastSettings | None = None,
    store: Optional[RecordStore] = None,
    ledger: Optional[LedgerService] = None,
    fulfill_transport: Optional[httpx.AsyncBaseTransport] = None,
    rate_limiter: Optional[InMemoryRateLimiter] = None,
    authenticator: Optional[WalletAuthenticator] = None,
) -> FastAPI:
    settings = settings or load_settings()
    store = store or create_store(settings)
    if ledger is None:
        ledger = UsdcLedger(settings.ledger, submitter_private_key=settings.service_wallet_private_key)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting IntentCast API (store: %s)", store.backend)
        await store.initialize()
        yield
        logger.info("Shutting down IntentCast API...")
        await store.close()
        close = getattr(ledger, "close", None)
        if close is not None:
            await close()

    app = FastAPI(
        title="IntentCast Discovery API",
        version=__version__,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Starlette runs the last-added middleware first.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "X-Wallet-Address", "X-Signature", "X-Nonce"],
    )
    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            config=RateLimitConfig(
                read_requests_per_minute=settings.read_requests_per_minute,
                write_requests_per_minute=settings.write_requests_per_minute,
            ),
            exclude_paths=[
                "/",
                "/health",
                f"{settings.api_prefix}/docs",
                f"{settings.api_prefix}/openapi.json",
            ],
            limiter=rate_limiter,
        )
    app.add_middleware(StructuredLoggingMiddleware)

    register_exception_handlers(app)

    network = to_legacy_network(settings.x402_network)
    controller = LifecycleController(
        store,
        ledger=ledger,
        service_wallet_address=_service_wallet_address(settings),
        service_wallet_private_key=settings.service_wallet_private_key,
        network=network,
    )
    deps = ApiDependencies(
        settings=settings,
        store=store,
        controller=controller,
        matching=MatchingEngine(store),
        authenticator=authenticator or WalletAuthenticator(app_name=settings.app_name),
        fulfillment=FulfillmentFlow(
            controller,
            private_key=settings.service_wallet_private_key,
            timeout=settings.fulfill_timeout_seconds,
            transport=fulfill_transport,
        ),
        ledger=ledger,
    )
    app.dependency_overrides[get_deps] = lambda: deps

    prefix = settings.api_prefix
    app.include_router(intents.router, prefix=f"{prefix}/intents")
    app.include_router(offers.router, prefix=f"{prefix}/offers")
    app.include_router(providers.router, prefix=f"{prefix}/providers")
    app.include_router(payments.router, prefix=f"{prefix}/payments")
    app.include_router(categories.router, prefix=f"{prefix}/categories")
    app.include_router(matching.router, prefix=f"{prefix}/matching")

    def health() -> dict:
        describe = getattr(ledger, "describe", None)
        return {
            "service": "IntentCast Discovery Service",
            "version": __version__,
            "status": "healthy",
            "environment": settings.environment,
            "store": store.backend,
            "network": network,
            "ledger": describe() if describe is not None else None,
            "docs": f"{prefix}/docs",
        }

    @app.get("/", tags=["health"])
    async def root():
        return health()

    @app.get("/health", tags=["health"])
    async def health_check():
        """Health check with store and ledger configuration."""
        return health()

    logger.info("API initialized with storage backend: %s", store.backend)
    return app


def create_app_from_env() -> FastAPI:
    """Entry point for ``uvicorn intentcast_api.main:create_app_from_env --factory``."""
    settings = load_settings()
    setup_logging(json_format=settings.is_production, level=settings.log_level)
    return create_app(settings)


def run() -> None:
    """Serve the API with uvicorn (``intentcast-api`` console script)."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "intentcast_api.main:create_app_from_env",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
    )


if __name__ == "__main__":
    run()

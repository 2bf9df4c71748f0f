"""Tests for the token-bucket rate limiter."""
from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI

from intentcast_api.middleware.rate_limit import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimitMiddleware,
    TokenBucket,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _make_app(limiter: InMemoryRateLimiter) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limiter=limiter)

    @app.get("/items")
    async def list_items():
        return {"items": []}

    @app.post("/items")
    async def create_item():
        return {"created": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(RateLimitConfig(read_requests_per_minute=3, write_requests_per_minute=2), clock=clock)


@pytest.fixture
async def client(limiter):
    transport = httpx.ASGITransport(app=_make_app(limiter))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestRateLimitMiddleware:
    @pytest.mark.asyncio
    async def test_headers_on_allowed_request(self, client):
        response = await client.get("/items")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert response.headers["X-RateLimit-Remaining"] == "2"

    @pytest.mark.asyncio
    async def test_write_budget_exhausted(self, client):
        for _ in range(2):
            assert (await client.post("/items")).status_code == 200

        response = await client.post("/items")

        assert response.status_code == 429
        assert response.headers["content-type"] == "application/problem+json"
        assert response.headers["Retry-After"] == "30"
        body = response.json()
        assert body["error_code"] == "RATE_LIMIT_EXCEEDED"
        assert body["retry_after_seconds"] == 30

    @pytest.mark.asyncio
    async def test_reads_and_writes_have_separate_budgets(self, client):
        for _ in range(2):
            await client.post("/items")

        assert (await client.get("/items")).status_code == 200

    @pytest.mark.asyncio
    async def test_bucket_refills(self, client, clock):
        for _ in range(2):
            await client.post("/items")
        assert (await client.post("/items")).status_code == 429

        clock.advance(30)

        assert (await client.post("/items")).status_code == 200

    @pytest.mark.asyncio
    async def test_wallets_are_limited_separately(self, client):
        for _ in range(2):
            await client.post("/items", headers={"x-wallet-address": "0xAAA"})

        assert (await client.post("/items", headers={"x-wallet-address": "0xaaa"})).status_code == 429
        assert (await client.post("/items", headers={"x-wallet-address": "0xBBB"})).status_code == 200

    @pytest.mark.asyncio
    async def test_excluded_paths(self, client):
        for _ in range(5):
            response = await client.get("/health")

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers

    @pytest.mark.asyncio
    async def test_idle_buckets_are_dropped(self, client, limiter, clock):
        for i in range(50):
            await client.get("/items", headers={"x-wallet-address": f"junk-{i}"})
        assert len(limiter) == 50

        clock.advance(60)
        response = await client.get("/items", headers={"x-wallet-address": "0xAAA"})

        assert response.status_code == 200
        assert len(limiter) == 1

    def test_cleanup_keeps_recent_buckets(self, limiter, clock):
        limiter._buckets["read:wallet:old"] = TokenBucket(capacity=3, tokens=3.0, last_update=clock.now - 61)
        limiter._buckets["read:wallet:new"] = TokenBucket(capacity=3, tokens=1.0, last_update=clock.now - 5)

        assert limiter.cleanup() == 1
        assert list(limiter._buckets) == ["read:wallet:new"]

    @pytest.mark.asyncio
    async def test_reset(self, client, limiter):
        for _ in range(2):
            await client.post("/items")

        limiter.reset()

        assert (await client.post("/items")).status_code == 200

"""Pytest configuration and fixtures."""

import os
import secrets

import pytest

_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)
os.environ.setdefault("ACTOR_URL", "http://actor.test")
os.environ.setdefault("BOOKING_SETTLE_DELAY", "0")
os.environ.pop("REDIS_URL", None)

from laborlink.query import QueryClient  # noqa: E402
from laborlink.queries import MarketplaceQueries, Session  # noqa: E402
from tests.helpers import BOB, FakeActor, FakeBackend  # noqa: E402


@pytest.fixture
def backend():
    b = FakeBackend()
    b.add_laborer(BOB, "Bob", location="Downtown")
    return b


@pytest.fixture
def make_queries():
    """Build MarketplaceQueries for a principal; returns (queries, actor)."""

    def _make(backend, principal, scope, *, ready=True, **kwargs):
        actor = FakeActor(backend, principal, ready=ready)
        session = Session(principal, actor, scope.client)
        kwargs.setdefault("settle_delay", 0.0)
        return MarketplaceQueries(session, scope, **kwargs), actor

    return _make


@pytest.fixture
def query_client():
    return QueryClient(stale_seconds=30)

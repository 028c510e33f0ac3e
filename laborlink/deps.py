import logging
import time

from fastapi import Depends, Request

from .cache import MemoryCacheStore, RedisCacheStore
from .clients import ActorClient
from .config import CACHE_TTL_SECONDS, CLIENT_IDLE_SECONDS
from .lifecycle import BookingLifecycle
from .queries import MarketplaceQueries, Session
from .query import QueryClient
from .redis_client import redis_client
from .security import Caller, get_current_caller

logger = logging.getLogger(__name__)


class ClientRegistry:
    """
    One QueryClient per principal.

    Clients nobody has used for `idle_seconds` are discarded on the next
    lookup; Redis-backed entries outlive them and expire by TTL.
    """

    def __init__(
        self,
        redis=None,
        ttl_seconds: int = CACHE_TTL_SECONDS,
        *,
        idle_seconds: float = CLIENT_IDLE_SECONDS,
        clock=time.monotonic,
    ):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.idle_seconds = idle_seconds
        self.clock = clock
        self._clients: dict[str, QueryClient] = {}
        self._last_used: dict[str, float] = {}

    def _store(self, principal: str):
        if self.redis is not None:
            return RedisCacheStore(self.redis, namespace=principal, ttl_seconds=self.ttl_seconds)
        return MemoryCacheStore(namespace=principal)

    def _expire_idle(self, now: float) -> None:
        for principal, last_used in list(self._last_used.items()):
            client = self._clients.get(principal)
            if now - last_used < self.idle_seconds or (client is not None and not client.is_idle()):
                continue
            self._clients.pop(principal, None)
            del self._last_used[principal]
            logger.debug("discarded idle query client for %s", principal)

    def for_principal(self, principal: str) -> QueryClient:
        now = self.clock()
        self._expire_idle(now)
        client = self._clients.get(principal)
        if client is None:
            client = QueryClient(self._store(principal))
            self._clients[principal] = client
        self._last_used[principal] = now
        return client

    def __len__(self) -> int:
        return len(self._clients)

    async def drop(self, principal: str) -> None:
        client = self._clients.pop(principal, None)
        self._last_used.pop(principal, None)
        if client is not None:
            await client.clear()


registry = ClientRegistry(redis=redis_client)


def actor_factory(caller: Caller, request_id: str | None):
    return ActorClient(caller.token, request_id=request_id)


def get_registry() -> ClientRegistry:
    return registry


def get_actor_factory():
    return actor_factory


async def get_queries(
    request: Request,
    caller: Caller = Depends(get_current_caller),
    clients: ClientRegistry = Depends(get_registry),
    make_actor=Depends(get_actor_factory),
):
    # the scope lives as long as the request; leaving it drops pending retries
    client = clients.for_principal(caller.principal)
    actor = make_actor(caller, getattr(request.state, "request_id", None))
    session = Session(caller.principal, actor, client)
    async with client.scope() as scope:
        yield MarketplaceQueries(session, scope)
    await client.collect_garbage()


def get_lifecycle(queries: MarketplaceQueries = Depends(get_queries)) -> BookingLifecycle:
    return BookingLifecycle(queries)

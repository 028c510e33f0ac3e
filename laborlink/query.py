"""
Keyed query cache with invalidation, in the spirit of a UI query library.

A `Query` names a key, the coroutine that loads it and the type of its
result. Reads go through a `QueryScope` (one per view / HTTP request):
while the scope is open its queries count as *active*, so invalidating
their keys refetches them immediately. Closing the scope abandons any
fetch or backoff timer that no other scope is still waiting on.

Cached values are stored JSON-encoded so the same logic works over the
in-memory store and the Redis store.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Awaitable, Callable

from pydantic import TypeAdapter

from .cache import CacheEntry, MemoryCacheStore, QueryKey, key_matches
from .config import CACHE_GC_SECONDS, QUERY_STALE_SECONDS
from .errors import BookingTimeout, MarketplaceError
from .retry import DEFAULT_RETRY, NO_RETRY, RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def _adapter(result_type) -> TypeAdapter:
    return TypeAdapter(result_type)


@dataclass
class Query:
    key: QueryKey
    fn: Callable[[], Awaitable[Any]]
    result_type: Any
    enabled: bool = True
    retry: RetryPolicy = DEFAULT_RETRY

    def encode(self, data):
        return _adapter(self.result_type).dump_python(data, mode="json")

    def decode(self, raw):
        return _adapter(self.result_type).validate_python(raw)


@dataclass
class QueryResult:
    data: Any = None
    error: MarketplaceError | None = None
    status: str = "idle"  # idle | success | error
    is_fetched: bool = False
    is_stale: bool = False

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_error(self) -> bool:
        return self.status == "error"


@dataclass(eq=False)
class _Fetch:
    key: QueryKey
    task: asyncio.Task
    outdated: bool = False
    holders: set = field(default_factory=set)


class QueryClient:
    """Process-wide cache for one identity. Mutated only via fetch / invalidate / clear."""

    def __init__(
        self,
        store=None,
        *,
        stale_seconds: float = QUERY_STALE_SECONDS,
        gc_seconds: float = CACHE_GC_SECONDS,
    ):
        self.store = store or MemoryCacheStore()
        self.stale_seconds = stale_seconds
        self.gc_seconds = gc_seconds
        self._last_gc = 0.0
        self._inflight: dict[QueryKey, _Fetch] = {}
        self._observers: dict[QueryKey, int] = {}
        self._queries: dict[QueryKey, Query] = {}

    def scope(self) -> "QueryScope":
        return QueryScope(self)

    def is_active(self, key: QueryKey) -> bool:
        return self._observers.get(tuple(key), 0) > 0

    async def get_cached(self, query: Query):
        entry = await self.store.get(query.key)
        if entry is None:
            return None
        return query.decode(entry.data)

    async def fetch(self, query: Query, scope: "QueryScope") -> QueryResult:
        if not query.enabled:
            # not eligible yet: no call, and never reported as fetched
            return QueryResult()

        scope._observe(query)

        entry = await self.store.get(query.key)
        if entry is not None and entry.is_fresh(self.stale_seconds):
            return QueryResult(data=query.decode(entry.data), status="success", is_fetched=True)

        try:
            data = await self._refetch(query, scope)
        except MarketplaceError as e:
            cached = query.decode(entry.data) if entry is not None else None
            return QueryResult(data=cached, error=e, status="error", is_fetched=True, is_stale=entry is not None)

        return QueryResult(data=data, status="success", is_fetched=True)

    async def _run(self, query: Query):
        data = await run_with_retry(query.fn, query.retry, label=repr(query.key))
        await self.store.set(query.key, CacheEntry(data=query.encode(data), updated_at=time.time()))
        return data

    def _start(self, query: Query) -> _Fetch:
        key = tuple(query.key)
        task = asyncio.create_task(self._run(query))
        fetch = _Fetch(key=key, task=task)
        self._inflight[key] = fetch

        def _done(t: asyncio.Task):
            if self._inflight.get(key) is fetch:
                del self._inflight[key]
            if not t.cancelled() and t.exception() is not None:
                logger.info("query %r failed: %s", key, t.exception())

        task.add_done_callback(_done)
        return fetch

    async def _refetch(self, query: Query, scope: "QueryScope"):
        key = tuple(query.key)
        fetch = self._inflight.get(key)

        if fetch is not None and fetch.outdated:
            # started before the last invalidation; its result may predate the mutation
            await asyncio.gather(asyncio.shield(fetch.task), return_exceptions=True)
            fetch = self._inflight.get(key)

        if fetch is None or fetch.task.done():
            fetch = self._start(query)

        scope._hold(fetch)
        return await asyncio.shield(fetch.task)

    def _matching_inflight(self, prefixes) -> list[_Fetch]:
        return [f for k, f in self._inflight.items() if any(key_matches(k, p) for p in prefixes)]

    async def wait_for_inflight(self, prefixes) -> None:
        """Let in-flight fetches of the given prefixes finish; their errors are the readers' concern."""
        pending = self._matching_inflight(prefixes)
        if pending:
            await asyncio.gather(*(asyncio.shield(f.task) for f in pending), return_exceptions=True)

    async def invalidate(
        self, prefixes, scope: "QueryScope", *, settle_delay: float = 0.0, refetch: bool = True
    ) -> list[QueryKey]:
        """
        Mark every entry under `prefixes` stale, then refetch the active ones
        unless `refetch` is false.

        Returns once the active refetches have completed, so anything read
        afterwards reflects the post-mutation backend state.
        """
        prefixes = [tuple(p) for p in prefixes]
        for fetch in self._matching_inflight(prefixes):
            fetch.outdated = True
        matched = await self.store.mark_stale(prefixes)
        logger.debug("invalidated %d entries under %r", len(matched), prefixes)
        if not refetch:
            return matched

        if settle_delay > 0:
            await asyncio.sleep(settle_delay)

        active = [
            q for k, q in self._queries.items()
            if self.is_active(k) and any(key_matches(k, p) for p in prefixes)
        ]
        if active:
            results = await asyncio.gather(*(self._refetch(q, scope) for q in active), return_exceptions=True)
            for q, r in zip(active, results):
                if isinstance(r, BaseException):
                    logger.info("refetch of %r after invalidation failed: %s", q.key, r)
        return matched

    def is_idle(self) -> bool:
        return not self._observers and not self._inflight

    async def collect_garbage(self, now: float | None = None, *, force: bool = False) -> list[QueryKey]:
        """
        Drop entries nobody observes that were last written more than
        `gc_seconds` ago. Runs at most once per `gc_seconds` unless forced.
        """
        now = time.time() if now is None else now
        if not force and now - self._last_gc < self.gc_seconds:
            return []
        self._last_gc = now

        expired = []
        for key in await self.store.keys():
            if self.is_active(key) or key in self._inflight:
                continue
            entry = await self.store.get(key)
            if entry is None or now - entry.updated_at >= self.gc_seconds:
                expired.append(key)
        if expired:
            await self.store.delete(expired)
            logger.debug("collected %d cache entries", len(expired))
        return expired

    async def clear(self) -> None:
        for fetch in list(self._inflight.values()):
            fetch.task.cancel()
        self._inflight.clear()
        self._queries.clear()
        await self.store.clear()


class QueryScope:
    """
    Lifetime of one consumer of the cache.

    Use as `async with client.scope() as scope:`; leaving the block releases
    observers and cancels fetches nobody else is waiting for.
    """

    def __init__(self, client: QueryClient):
        self.client = client
        self._observed: list[QueryKey] = []
        self._fetches: list[_Fetch] = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    async def fetch(self, query: Query) -> QueryResult:
        if self.closed:
            raise RuntimeError("scope is closed")
        return await self.client.fetch(query, self)

    def _observe(self, query: Query) -> None:
        key = tuple(query.key)
        self.client._queries[key] = query
        self.client._observers[key] = self.client._observers.get(key, 0) + 1
        self._observed.append(key)

    def _hold(self, fetch: _Fetch) -> None:
        fetch.holders.add(self)
        self._fetches.append(fetch)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True

        observers = self.client._observers
        for key in self._observed:
            count = observers.get(key, 0) - 1
            if count > 0:
                observers[key] = count
            else:
                observers.pop(key, None)
                # the query closes over this request's actor and token
                self.client._queries.pop(key, None)

        for fetch in self._fetches:
            fetch.holders.discard(self)
            if not fetch.holders and not fetch.task.done():
                logger.debug("abandoning fetch of %r", fetch.key)
                fetch.task.cancel()

        self._observed.clear()
        self._fetches.clear()


class Mutation:
    """
    A write against the actor followed by cache reconciliation.

    `invalidates` is a list of key prefixes, or a callable building it from
    the call arguments. With `timeout` set, the call is abandoned after that
    many seconds and `timeout_error` is raised; the backend may still
    complete it. `settle_delay` waits between marking entries stale and
    refetching them.
    """

    def __init__(
        self,
        fn: Callable[..., Awaitable[Any]],
        *,
        invalidates=(),
        settle_delay: float = 0.0,
        timeout: float | None = None,
        timeout_error=BookingTimeout,
        retry: RetryPolicy = NO_RETRY,
        label: str = "",
    ):
        self.fn = fn
        self.invalidates = invalidates
        self.settle_delay = settle_delay
        self.timeout = timeout
        self.timeout_error = timeout_error
        self.retry = retry
        self.label = label or getattr(fn, "__name__", "mutation")
        self.is_pending = False
        self.error: MarketplaceError | None = None
        self.data = None

    def _prefixes(self, *args, **kwargs):
        if callable(self.invalidates):
            return [tuple(p) for p in self.invalidates(*args, **kwargs)]
        return [tuple(p) for p in self.invalidates]

    async def _call(self, *args, **kwargs):
        if self.timeout is None:
            return await self.fn(*args, **kwargs)
        try:
            return await asyncio.wait_for(self.fn(*args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("%s exceeded %.1fs client timeout", self.label, self.timeout)
            raise self.timeout_error()

    async def run(self, scope: QueryScope, *args, **kwargs):
        prefixes = self._prefixes(*args, **kwargs)
        await scope.client.wait_for_inflight(prefixes)

        self.is_pending = True
        self.error = None
        try:
            result = await run_with_retry(
                lambda: self._call(*args, **kwargs), self.retry, label=self.label
            )
        except MarketplaceError as e:
            self.error = e
            raise
        finally:
            self.is_pending = False

        await scope.client.invalidate(prefixes, scope, settle_delay=self.settle_delay)
        self.data = result
        return result

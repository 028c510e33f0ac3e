import os

ACTOR_URL = os.getenv("ACTOR_URL") or "http://backend-actor:8000"

# per-call httpx timeout; the booking ceiling below is enforced separately
ACTOR_TIMEOUT = float(os.getenv("ACTOR_TIMEOUT") or "10.0")

CREATE_BOOKING_TIMEOUT = float(os.getenv("CREATE_BOOKING_TIMEOUT") or "15.0")

# Backend listings lag behind a freshly created booking; wait this long
# before refetching. Workaround for a backend consistency gap.
BOOKING_SETTLE_DELAY = float(os.getenv("BOOKING_SETTLE_DELAY") or "1.5")

QUERY_STALE_SECONDS = float(os.getenv("QUERY_STALE_SECONDS") or "30")

RETRY_MAX = int(os.getenv("RETRY_MAX") or "2")
RETRY_BASE_SECONDS = float(os.getenv("RETRY_BASE_SECONDS") or "1.0")
RETRY_CAP_SECONDS = float(os.getenv("RETRY_CAP_SECONDS") or "5.0")

REDIS_URL = os.getenv("REDIS_URL")  # optional, in-memory cache when unset
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS") or "300")

LOG_LEVEL = os.getenv("LOG_LEVEL") or "INFO"

# unobserved cache entries older than this are dropped from process memory
CACHE_GC_SECONDS = float(os.getenv("CACHE_GC_SECONDS") or str(CACHE_TTL_SECONDS))
# a principal's query client is discarded after this long without requests
CLIENT_IDLE_SECONDS = float(os.getenv("CLIENT_IDLE_SECONDS") or "900")

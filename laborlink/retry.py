import asyncio
import logging
from dataclasses import dataclass

from .config import RETRY_MAX, RETRY_BASE_SECONDS, RETRY_CAP_SECONDS
from .errors import MarketplaceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff for transport failures.

    delay(attempt) = min(cap, base * 2**attempt), attempt counted from 0.
    Business-logic errors are never retried.
    """

    max_retries: int = RETRY_MAX
    base_seconds: float = RETRY_BASE_SECONDS
    cap_seconds: float = RETRY_CAP_SECONDS

    def delay(self, attempt: int) -> float:
        return min(self.cap_seconds, self.base_seconds * (2 ** attempt))

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return isinstance(error, MarketplaceError) and error.retryable


NO_RETRY = RetryPolicy(max_retries=0)
DEFAULT_RETRY = RetryPolicy()


async def run_with_retry(fn, policy: RetryPolicy, *, label: str = "", sleep=asyncio.sleep):
    """
    Await `fn()` until it succeeds or the policy gives up.

    The backoff sleep is a plain await, so cancelling the surrounding task
    abandons the pending retry.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except MarketplaceError as e:
            if not policy.should_retry(e, attempt):
                raise
            delay = policy.delay(attempt)
            logger.info("retrying %s in %.2fs after %s (attempt %d)", label, delay, e.kind, attempt + 1)
            attempt += 1
            await sleep(delay)

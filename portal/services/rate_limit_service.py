"""
Rate limiting — sliding windows per client IP.

Buckets:
  api      every guarded request        API_RATE_LIMIT / API_RATE_WINDOW_SECONDS
  login    POST /auth/login             LOGIN_RATE_LIMIT / LOGIN_RATE_WINDOW_SECONDS
  payment  POST /payments               PAYMENT_RATE_LIMIT / PAYMENT_RATE_WINDOW_SECONDS

The windows live in the key-value store (KeyValueStore.hit_window), which
prunes expired hits and records the new one atomically. Rejected requests
are not recorded, so hammering a closed window doesn't push the reopening
time further out.
"""

import enum
import logging
import math

from portal.config import settings
from portal.exceptions import RateLimitedError
from portal.kvstore import KeyValueStore

log = logging.getLogger(__name__)


class Bucket(str, enum.Enum):
    API = "api"
    LOGIN = "login"
    PAYMENT = "payment"


def bucket_policy(bucket: Bucket) -> tuple[int, int]:
    """(limit, window seconds) for a bucket, read from settings at call time."""
    if bucket == Bucket.LOGIN:
        return settings.LOGIN_RATE_LIMIT, settings.LOGIN_RATE_WINDOW_SECONDS
    if bucket == Bucket.PAYMENT:
        return settings.PAYMENT_RATE_LIMIT, settings.PAYMENT_RATE_WINDOW_SECONDS
    return settings.API_RATE_LIMIT, settings.API_RATE_WINDOW_SECONDS


async def check(store: KeyValueStore, bucket: Bucket, client_ip: str) -> None:
    """
    Count one request from client_ip against the bucket.

    Raises:
        RateLimitedError: With the seconds until the window reopens.
    """
    limit, window = bucket_policy(bucket)
    allowed, retry_after = await store.hit_window(
        f"ratelimit:{bucket.value}:{client_ip}", limit, window
    )
    if not allowed:
        log.info("Rate limit %s exceeded for %s", bucket.value, client_ip)
        raise RateLimitedError(math.ceil(retry_after))

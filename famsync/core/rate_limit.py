"""Rate limiter shared by the auth and invite-redemption endpoints.

Counters live in Redis when it answers a ping at startup, so several API
processes share one budget per client address. Without Redis each process
counts in memory.
"""

import logging

import redis
from slowapi import Limiter
from slowapi.util import get_remote_address

from famsync.config import settings

logger = logging.getLogger(__name__)

DEFAULT_LIMITS = ["120/minute"]

# Credential endpoints
LOGIN_LIMIT = "10/minute"
REGISTER_LIMIT = "5/minute"

# Invite codes are 8 hex characters; redemption attempts are the guessing surface.
INVITE_REDEMPTION_LIMIT = "10/minute"


def _redis_reachable(url: str) -> bool:
    client = redis.from_url(url, socket_connect_timeout=1)
    try:
        client.ping()
        return True
    except redis.RedisError:
        return False
    finally:
        client.close()


def _create_limiter() -> Limiter:
    if _redis_reachable(settings.REDIS_URL):
        logger.info("Rate limiter using Redis storage at %s", settings.REDIS_URL)
        return Limiter(
            key_func=get_remote_address,
            default_limits=DEFAULT_LIMITS,
            storage_uri=settings.REDIS_URL,
        )
    logger.warning("Redis unreachable, rate limiter counting in memory")
    return Limiter(key_func=get_remote_address, default_limits=DEFAULT_LIMITS)


limiter = _create_limiter()

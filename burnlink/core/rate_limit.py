from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Tuple

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from burnlink.config import REDIS_URL
from burnlink.core.exceptions import RateLimitedError, StorageError
from burnlink.db import get_engine
from burnlink.models import RateLimitCounter, utcnow

logger = logging.getLogger("burnlink.rate_limit")

UPLOAD = "upload"
VIEW = "view"

_redis_client = None
_redis_lock = threading.Lock()


def _get_redis_client():
    global _redis_client
    if _redis_client is None:
        with _redis_lock:
            if _redis_client is None:
                import redis

                _redis_client = redis.from_url(REDIS_URL)
    return _redis_client


class RateLimiter:
    """Fixed window rate limiter keyed by (client identity, action).

    Counters live in Redis when ``REDIS_URL`` is configured and in the SQL
    database otherwise. Either way the increment and the comparison against
    the limit happen in the shared store, so concurrent requests from one
    client cannot collectively exceed the limit. Windows reset lazily: the
    first hit after a window has elapsed starts a new one.
    """

    def __init__(self, engine: Engine | None = None, redis_client=None) -> None:
        self._engine = engine
        self._redis_client = redis_client
        self.use_redis = redis_client is not None or bool(REDIS_URL)

    def hit(self, identity: str, action: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        """
        Register a hit for the given identity and action.
        Returns (allowed, retry_after_seconds).
        """
        limit = max(limit, 1)
        if self.use_redis:
            return self._hit_redis(identity, action, limit, window_seconds)
        return self._hit_database(identity, action, limit, window_seconds)

    def check(self, identity: str, action: str, limit: int, window_seconds: int) -> None:
        allowed, retry_after = self.hit(identity, action, limit, window_seconds)
        if not allowed:
            logger.warning(
                "event=rate_limited identity=%s action=%s limit=%s retry_after=%s",
                identity,
                action,
                limit,
                retry_after,
            )
            raise RateLimitedError(
                f"Rate limit exceeded: max {limit} {action}s per {_describe_window(window_seconds)}",
                retry_after=retry_after,
            )

    def _hit_redis(self, identity: str, action: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        import redis

        client = self._redis_client or _get_redis_client()
        redis_key = f"rate_limit:{action}:{identity}"
        try:
            # MULTI/EXEC: the window key is created with its TTL only if absent,
            # then incremented; no other client can interleave.
            pipe = client.pipeline(transaction=True)
            pipe.set(redis_key, 0, ex=int(window_seconds), nx=True)
            pipe.incr(redis_key)
            pipe.ttl(redis_key)
            _, count, ttl = pipe.execute()
        except redis.RedisError as exc:
            logger.error("event=rate_limit_backend_failure backend=redis error=%s", exc)
            raise StorageError() from exc

        retry_after = int(ttl) if ttl and int(ttl) > 0 else int(window_seconds)
        if int(count) > limit:
            return False, retry_after
        return True, retry_after

    def _hit_database(self, identity: str, action: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        engine = self._engine or get_engine()
        now = utcnow()
        window_start_cutoff = now - timedelta(seconds=window_seconds)
        key = (RateLimitCounter.identity == identity, RateLimitCounter.action == action)

        bump = (
            update(RateLimitCounter)
            .where(
                *key,
                RateLimitCounter.window_started_at > window_start_cutoff,
                RateLimitCounter.count < limit,
            )
            .values(count=RateLimitCounter.count + 1)
            .execution_options(synchronize_session=False)
        )
        reset = (
            update(RateLimitCounter)
            .where(*key, RateLimitCounter.window_started_at <= window_start_cutoff)
            .values(count=1, window_started_at=now)
            .execution_options(synchronize_session=False)
        )

        try:
            for attempt in range(2):
                with Session(engine) as session:
                    if session.execute(bump).rowcount:
                        session.commit()
                        return True, window_seconds
                    if session.execute(reset).rowcount:
                        session.commit()
                        return True, window_seconds
                    session.rollback()
                if attempt:
                    break
                try:
                    with Session(engine) as session:
                        session.add(
                            RateLimitCounter(
                                identity=identity, action=action, count=1, window_started_at=now
                            )
                        )
                        session.commit()
                    return True, window_seconds
                except IntegrityError:
                    # Another request created the counter first; retry against it.
                    continue

            with Session(engine) as session:
                counter = session.get(RateLimitCounter, (identity, action))
        except SQLAlchemyError as exc:
            logger.error("event=rate_limit_backend_failure backend=database error=%s", exc)
            raise StorageError() from exc

        if counter is None:
            return False, window_seconds
        resets_at = counter.window_started_at + timedelta(seconds=window_seconds)
        retry_after = max(0, int((resets_at - now).total_seconds()))
        return False, retry_after or 1


def _describe_window(window_seconds: int) -> str:
    if window_seconds % 3600 == 0:
        hours = window_seconds // 3600
        return "hour" if hours == 1 else f"{hours} hours"
    if window_seconds % 60 == 0:
        minutes = window_seconds // 60
        return "minute" if minutes == 1 else f"{minutes} minutes"
    return f"{window_seconds} seconds"

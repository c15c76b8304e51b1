from concurrent.futures import ThreadPoolExecutor

import pytest
import redis

from burnlink.core import rate_limit as rate_limit_module
from burnlink.core.exceptions import RateLimitedError, StorageError
from burnlink.core.rate_limit import UPLOAD, VIEW, RateLimiter


@pytest.fixture
def frozen_limiter(limiter, clock, monkeypatch):
    monkeypatch.setattr(rate_limit_module, "utcnow", clock)
    return limiter


def test_allows_up_to_limit_then_rejects(frozen_limiter):
    results = [frozen_limiter.hit("1.2.3.4", UPLOAD, 3, 60)[0] for _ in range(4)]
    assert results == [True, True, True, False]


def test_rejection_reports_time_until_reset(frozen_limiter, clock):
    for _ in range(2):
        frozen_limiter.hit("1.2.3.4", VIEW, 2, 3600)
    clock.advance(minutes=10)

    allowed, retry_after = frozen_limiter.hit("1.2.3.4", VIEW, 2, 3600)

    assert allowed is False
    assert retry_after == 50 * 60


def test_window_resets_lazily_after_it_elapses(frozen_limiter, clock):
    for _ in range(2):
        frozen_limiter.hit("1.2.3.4", UPLOAD, 2, 60)
    assert frozen_limiter.hit("1.2.3.4", UPLOAD, 2, 60)[0] is False

    clock.advance(seconds=61)

    assert frozen_limiter.hit("1.2.3.4", UPLOAD, 2, 60)[0] is True
    assert frozen_limiter.hit("1.2.3.4", UPLOAD, 2, 60)[0] is True
    assert frozen_limiter.hit("1.2.3.4", UPLOAD, 2, 60)[0] is False


def test_identities_and_actions_are_independent(frozen_limiter):
    assert frozen_limiter.hit("a", UPLOAD, 1, 60)[0] is True
    assert frozen_limiter.hit("a", UPLOAD, 1, 60)[0] is False
    assert frozen_limiter.hit("a", VIEW, 1, 60)[0] is True
    assert frozen_limiter.hit("b", UPLOAD, 1, 60)[0] is True


def test_check_raises_with_retry_after(frozen_limiter):
    frozen_limiter.check("a", VIEW, 1, 3600)
    with pytest.raises(RateLimitedError) as excinfo:
        frozen_limiter.check("a", VIEW, 1, 3600)
    assert excinfo.value.retry_after == 3600
    assert "max 1 views per hour" in excinfo.value.detail


def test_concurrent_hits_never_exceed_limit(limiter):
    with ThreadPoolExecutor(max_workers=12) as pool:
        results = list(pool.map(lambda _: limiter.hit("same-client", UPLOAD, 5, 3600)[0], range(12)))

    assert results.count(True) == 5


class FakeRedis:
    """Enough of a Redis client for the limiter's pipeline, with a hand-driven clock."""

    def __init__(self):
        self.now = 0.0
        self.values = {}
        self.expires_at = {}

    def _purge(self, key):
        if key in self.expires_at and self.now >= self.expires_at[key]:
            self.values.pop(key, None)
            self.expires_at.pop(key, None)

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def set(self, key, value, ex=None, nx=False):
        self.ops.append(("set", key, value, ex, nx))
        return self

    def incr(self, key):
        self.ops.append(("incr", key))
        return self

    def ttl(self, key):
        self.ops.append(("ttl", key))
        return self

    def execute(self):
        client = self.client
        results = []
        for op, key, *args in self.ops:
            client._purge(key)
            if op == "set":
                value, ex, nx = args
                if nx and key in client.values:
                    results.append(None)
                    continue
                client.values[key] = int(value)
                client.expires_at[key] = client.now + ex
                results.append(True)
            elif op == "incr":
                client.values[key] = client.values.get(key, 0) + 1
                results.append(client.values[key])
            else:
                remaining = client.expires_at.get(key)
                results.append(int(remaining - client.now) if remaining is not None else -2)
        return results


def test_redis_backend_counts_and_resets():
    fake = FakeRedis()
    limiter = RateLimiter(redis_client=fake)

    assert [limiter.hit("ip", VIEW, 2, 3600)[0] for _ in range(3)] == [True, True, False]
    assert limiter.hit("ip", VIEW, 2, 3600) == (False, 3600)

    fake.now += 3600
    assert limiter.hit("ip", VIEW, 2, 3600)[0] is True


def test_redis_failure_surfaces_as_storage_error():
    class BrokenRedis:
        def pipeline(self, transaction=True):
            raise redis.ConnectionError("connection refused")

    limiter = RateLimiter(redis_client=BrokenRedis())
    with pytest.raises(StorageError):
        limiter.hit("ip", VIEW, 2, 3600)

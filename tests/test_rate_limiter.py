import pytest

from agenda.domain.limits.repository import DatabaseViolationSink, ViolationRepository
from agenda.errors import ResourceExhaustedError
from agenda.rate_limiter import (
    InMemoryRateLimitStore,
    RateLimiter,
    RedisRateLimitStore,
    build_rate_limiters,
)


class FakeTime:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """Just enough of redis.Redis for the fixed-window store"""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    def incr(self, key):
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    def expire(self, key, seconds):
        self.ttls[key] = seconds

    def get(self, key):
        value = self.values.get(key)
        return str(value) if value is not None else None

    def scan_iter(self, match=None, count=None):
        prefix = match.rstrip("*") if match else ""
        return iter([key for key in self.values if key.startswith(prefix)])


@pytest.fixture
def fake_time():
    return FakeTime()


class TestInMemoryStore:
    def test_allows_exactly_max_requests_per_window(self, fake_time):
        store = InMemoryRateLimitStore(3, 60, clock=fake_time)
        results = [store.check_and_increment("1.2.3.4:createReservation") for _ in range(5)]
        assert results == [True, True, True, False, False]

    def test_new_window_resets_count(self, fake_time):
        store = InMemoryRateLimitStore(2, 60, clock=fake_time)
        store.check_and_increment("k")
        store.check_and_increment("k")
        assert store.check_and_increment("k") is False

        fake_time.now += 60
        assert store.check_and_increment("k") is True
        assert store.current_count("k") == 1

    def test_keys_are_independent(self, fake_time):
        store = InMemoryRateLimitStore(1, 60, clock=fake_time)
        assert store.check_and_increment("alice:createReservation")
        assert store.check_and_increment("bob:createReservation")
        assert store.check_and_increment("alice:finalizeReservation")
        assert not store.check_and_increment("alice:createReservation")

    def test_cleanup_evicts_idle_keys(self, fake_time):
        store = InMemoryRateLimitStore(5, 60, clock=fake_time)
        store.check_and_increment("idle")
        fake_time.now += 90
        store.check_and_increment("busy")
        fake_time.now += 40

        # idle was last seen 130s ago, busy 40s ago
        assert store.cleanup() == 1
        assert store.get_stats() == {"totalKeys": 1, "activeWindows": 1}

    def test_stats_count_active_windows(self, fake_time):
        store = InMemoryRateLimitStore(5, 60, clock=fake_time)
        store.check_and_increment("old")
        fake_time.now += 61
        store.check_and_increment("new")
        assert store.get_stats() == {"totalKeys": 2, "activeWindows": 1}


class TestWindowBoundary:
    def test_hundred_and_first_request_is_rejected_until_window_ends(self, fake_time):
        violations = []
        limiter = RateLimiter(
            InMemoryRateLimitStore(100, 60, clock=fake_time), name="user", violation_sink=violations.append
        )
        for _ in range(100):
            limiter.check_limit("bruno", "createReservation")

        with pytest.raises(ResourceExhaustedError):
            limiter.check_limit("bruno", "createReservation")

        fake_time.now += 60
        limiter.check_limit("bruno", "createReservation")
        assert len(violations) == 1
        assert violations[0]["metadata"]["requestCount"] == 100


class TestRedisStore:
    def test_counts_and_sets_expiry_on_first_hit(self):
        client = FakeRedis()
        store = RedisRateLimitStore(client, 2, 60, key_prefix="rate_limit:user")

        assert [store.check_and_increment("ip:api") for _ in range(3)] == [True, True, False]
        assert client.ttls == {"rate_limit:user:ip:api": 60}
        assert store.current_count("ip:api") == 2
        assert store.get_stats() == {"totalKeys": 1, "activeWindows": 1}


class TestRateLimiter:
    def test_rejection_raises_with_retry_after_and_records_violation(self, fake_time):
        violations = []
        limiter = RateLimiter(
            InMemoryRateLimitStore(1, 60, clock=fake_time), name="user", violation_sink=violations.append
        )
        limiter.check_limit("bruno", "createReservation")

        with pytest.raises(ResourceExhaustedError) as exc:
            limiter.check_limit("bruno", "createReservation")

        assert exc.value.retry_after == 60
        assert exc.value.details["limit"] == 1
        assert len(violations) == 1
        assert violations[0]["actor_id"] == "bruno"
        assert violations[0]["type"] == "rateLimit"
        assert violations[0]["metadata"]["endpoint"] == "createReservation"
        assert violations[0]["metadata"]["windowMs"] == 60_000

    def test_failing_sink_does_not_change_outcome(self, fake_time):
        def broken_sink(violation):
            raise RuntimeError("database down")

        limiter = RateLimiter(InMemoryRateLimitStore(1, 60, clock=fake_time), violation_sink=broken_sink)
        limiter.check_limit("bruno", "api")
        with pytest.raises(ResourceExhaustedError):
            limiter.check_limit("bruno", "api")

    def test_cleanup_timer_starts_and_stops(self, fake_time):
        limiter = RateLimiter(InMemoryRateLimitStore(5, 60, clock=fake_time), cleanup_interval=3600)
        limiter.start_cleanup_timer()
        assert limiter._cleanup_thread.is_alive()
        limiter.stop_cleanup_timer()
        assert limiter._cleanup_thread is None

    def test_build_memory_limiters(self, fake_time):
        limiters = build_rate_limiters(backend="memory", clock=fake_time)
        assert set(limiters) == {"global", "user", "admin"}
        assert limiters["global"].store.max_requests == 100
        assert limiters["user"].store.max_requests == 50
        assert limiters["admin"].store.max_requests == 200


class TestViolationSink:
    def test_violations_are_persisted(self, session_factory, db, fake_time):
        limiter = RateLimiter(
            InMemoryRateLimitStore(1, 60, clock=fake_time),
            name="user",
            violation_sink=DatabaseViolationSink(session_factory),
        )
        limiter.check_limit("10.0.0.7", "createReservation")
        with pytest.raises(ResourceExhaustedError):
            limiter.check_limit("10.0.0.7", "createReservation")

        [violation] = ViolationRepository.list_violations(db)
        assert violation.actor_id == "10.0.0.7"
        assert violation.type == "rateLimit"
        assert violation.action == "throttle"
        assert violation.details["limiter"] == "user"
        assert violation.resolved is False

        resolved = ViolationRepository.resolve(db, violation.id)
        assert resolved.resolved is True
        assert ViolationRepository.list_violations(db, resolved=False) == []

from giftdraw.extensions import limiter
from giftdraw.ratelimit import RateLimitState


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_window_resets():
    clock = FakeClock()
    state = RateLimitState(max_requests=2, window_seconds=60, clock=clock)

    assert state.hit("login:1.2.3.4") is None
    assert state.hit("login:1.2.3.4") is None
    assert state.hit("login:1.2.3.4") == 60
    assert state.hit("login:5.6.7.8") is None

    clock.now += 45
    assert state.hit("login:1.2.3.4") == 15

    clock.now += 15
    assert state.hit("login:1.2.3.4") is None


def test_limited_route_returns_429(app, client):
    limiter.state(app).max_requests = 2

    for _ in range(2):
        assert client.post("/admin/login", json={"password": "wrong"}).status_code == 401
    resp = client.post("/admin/login", json={"password": "wrong"})

    assert resp.status_code == 429
    assert int(resp.headers["Retry-After"]) > 0


def test_state_belongs_to_the_app(app):
    state = limiter.state(app)
    state.hit("verify:127.0.0.1")

    limiter.shutdown(app)

    assert state.buckets == {}
    assert "giftdraw.ratelimit" not in app.extensions
    limiter.init_app(app)


def test_expired_buckets_are_swept():
    clock = FakeClock()
    state = RateLimitState(max_requests=5, window_seconds=60, clock=clock)
    for n in range(50):
        state.hit(f"verify:10.0.0.{n}")
    assert len(state.buckets) == 50

    clock.now += 61
    state.hit("verify:10.0.1.1")

    assert list(state.buckets) == ["verify:10.0.1.1"]


def test_live_buckets_survive_a_sweep():
    clock = FakeClock()
    state = RateLimitState(max_requests=1, window_seconds=60, clock=clock)
    state.hit("login:old")
    clock.now += 30
    state.hit("login:recent")

    clock.now += 35
    state.hit("login:new")

    assert set(state.buckets) == {"login:recent", "login:new"}
    assert state.hit("login:recent") is not None

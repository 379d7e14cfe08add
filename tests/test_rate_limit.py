from propass.middleware.rate_limit import RateLimitMiddleware, SlidingWindow


def test_redeem_rate_limit_returns_429(client, monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_LIMIT", "3")
    monkeypatch.setenv("RATE_LIMIT_WINDOW_SEC", "60")
    monkeypatch.setenv("TRUST_PROXY_HEADERS", "1")

    for _ in range(3):
        res = client.post("/redeem", json={"code": "GUESS"}, headers={"X-Forwarded-For": "1.2.3.4"})
        assert res.status_code == 400

    res = client.post("/redeem", json={"code": "GUESS"}, headers={"X-Forwarded-For": "1.2.3.4"})
    assert res.status_code == 429
    assert res.json() == {"message": "Too many requests; please slow down."}

    # Other clients and untracked paths are unaffected.
    other = client.post("/redeem", json={"code": "GUESS"}, headers={"X-Forwarded-For": "5.6.7.8"})
    assert other.status_code == 400
    assert client.get("/healthz", headers={"X-Forwarded-For": "1.2.3.4"}).status_code == 200


def test_forwarded_for_is_ignored_without_trusted_proxy(client, monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_LIMIT", "2")
    # A window of its own keeps this bucket apart from earlier anonymous posts.
    monkeypatch.setenv("RATE_LIMIT_WINDOW_SEC", "37")
    monkeypatch.delenv("TRUST_PROXY_HEADERS", raising=False)

    statuses = [
        client.post("/redeem", json={"code": "GUESS"}, headers={"X-Forwarded-For": f"10.0.0.{i}"}).status_code
        for i in range(3)
    ]
    assert statuses == [400, 400, 429]


def test_idle_buckets_are_dropped():
    limiter = RateLimitMiddleware(None, window_seconds=10)
    start = limiter._last_sweep
    stale = SlidingWindow(10)
    stale.add_and_prune(start - 5)
    fresh = SlidingWindow(10)
    fresh.add_and_prune(start + 15)
    limiter._buckets = {("ip:old", "/redeem", 10): stale, ("ip:new", "/redeem", 10): fresh}

    limiter._sweep(start + 5, 10)
    assert len(limiter._buckets) == 2

    limiter._sweep(start + 20, 10)
    assert list(limiter._buckets) == [("ip:new", "/redeem", 10)]


def test_sliding_window_prunes_old_events():
    window = SlidingWindow(10)
    assert window.add_and_prune(100.0) == 1
    assert window.add_and_prune(105.0) == 2
    assert window.add_and_prune(111.0) == 2
    assert window.add_and_prune(200.0) == 1

"""Tests for the per-IP rate limiter."""

import hashlib

from apially.services.rate_limiter import RateLimiter


T0 = 1_700_000_000.0


def test_key_hashes_the_ip():
    key = RateLimiter.make_key("203.0.113.9", "email_test")

    assert key == hashlib.sha256(b"203.0.113.9").hexdigest() + "_email_test"
    assert "203.0.113.9" not in key


def test_allows_up_to_the_limit_then_blocks():
    limiter = RateLimiter(max_requests=5, window_seconds=3600, block_seconds=3600)

    results = [limiter.check("1.2.3.4", "email_test", now=T0 + i) for i in range(5)]
    assert all(r.allowed for r in results)
    assert [r.remaining for r in results] == [4, 3, 2, 1, 0]

    sixth = limiter.check("1.2.3.4", "email_test", now=T0 + 5)
    assert sixth.allowed is False
    assert sixth.retry_after == 3600
    assert sixth.headers()["Retry-After"] == "3600"


def test_block_counts_down():
    limiter = RateLimiter(max_requests=1, window_seconds=60, block_seconds=600)
    limiter.check("1.2.3.4", "x", now=T0)
    limiter.check("1.2.3.4", "x", now=T0 + 1)

    later = limiter.check("1.2.3.4", "x", now=T0 + 101)

    assert later.allowed is False
    assert later.retry_after == 500
    assert later.reset_at == int(T0 + 601)

    assert limiter.check("1.2.3.4", "x", now=T0 + 602).allowed is True


def test_window_slides():
    limiter = RateLimiter(max_requests=2, window_seconds=60, block_seconds=600)
    limiter.check("1.2.3.4", "x", now=T0)
    limiter.check("1.2.3.4", "x", now=T0 + 30)

    assert limiter.check("1.2.3.4", "x", now=T0 + 61).allowed is True


def test_ips_and_endpoints_are_independent():
    limiter = RateLimiter(max_requests=1)
    limiter.check("1.2.3.4", "email_test", now=T0)

    assert limiter.check("5.6.7.8", "email_test", now=T0).allowed is True
    assert limiter.check("1.2.3.4", "dropbox_test", now=T0).allowed is True
    assert limiter.check("1.2.3.4", "email_test", now=T0).allowed is False


def test_allowed_result_has_no_retry_after():
    result = RateLimiter().check("1.2.3.4", "x", now=T0)

    assert result.headers() == {
        "X-RateLimit-Limit": "5",
        "X-RateLimit-Remaining": "4",
        "X-RateLimit-Reset": str(int(T0 + 3600)),
    }


def test_cleanup_forgets_idle_keys_but_not_blocked_ones():
    limiter = RateLimiter(max_requests=1, block_seconds=10 * 24 * 3600)
    limiter.check("idle", "x", now=T0)
    limiter.check("blocked", "x", now=T0)
    limiter.check("blocked", "x", now=T0)
    limiter.check("recent", "x", now=T0 + 3 * 24 * 3600)

    assert limiter.cleanup(now=T0 + 3 * 24 * 3600) == 1
    assert len(limiter) == 2


def test_email_test_endpoint_returns_429(client):
    for _ in range(5):
        client.post("/api/email/test", json={"testEmail": "me@example.com"})

    response = client.post("/api/email/test", json={"testEmail": "me@example.com"})

    assert response.status_code == 429
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert response.headers["Retry-After"] == "3600"

from __future__ import annotations

from pharmasite import ratelimit

CONTACT = {
    "name": "Ada",
    "email": "ada@example.com",
    "subject": "Order",
    "message": "Where is my parcel?",
}


def test_metrics_endpoint(client) -> None:
    client.get("/health")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert b"pharmasite_requests_total" in response.content
    assert b"pharmasite_latency_seconds" in response.content


def test_contact_rate_limit_blocks_sixth_submission(client, configure) -> None:
    configure(CONTACT_RATE_LIMIT_TOKENS=5, CONTACT_RATE_LIMIT_WINDOW_MS=60_000)

    statuses = [client.post("/api/contact", json=CONTACT).status_code for _ in range(6)]

    assert statuses == [200, 200, 200, 200, 200, 429]


def test_rejection_body_and_metric(client, configure) -> None:
    configure(CONTACT_RATE_LIMIT_TOKENS=1)
    client.post("/api/contact", json=CONTACT)

    response = client.post("/api/contact", json=CONTACT)

    assert response.status_code == 429
    assert response.json() == {"detail": "Too Many Requests"}
    metrics = client.get("/metrics").text
    assert 'pharmasite_rate_limited_total{action="contact"}' in metrics


def test_rate_limit_runs_before_validation(client, configure) -> None:
    configure(CONTACT_RATE_LIMIT_TOKENS=1)
    assert client.post("/api/contact", json={}).status_code == 400

    assert client.post("/api/contact", json={}).status_code == 429


def test_distinct_forwarded_addresses_have_own_buckets(client, configure) -> None:
    configure(CONTACT_RATE_LIMIT_TOKENS=1)

    first = client.post(
        "/api/contact", json=CONTACT, headers={"X-Forwarded-For": "10.0.0.1, 172.16.0.9"}
    )
    blocked = client.post("/api/contact", json=CONTACT, headers={"X-Forwarded-For": "10.0.0.1"})
    other = client.post("/api/contact", json=CONTACT, headers={"X-Forwarded-For": "10.0.0.2"})

    assert first.status_code == 200
    assert blocked.status_code == 429
    assert other.status_code == 200
    assert ratelimit.limiter.peek("contact:10.0.0.1") is not None


def test_contact_and_careers_limits_are_separate(client, configure) -> None:
    configure(CONTACT_RATE_LIMIT_TOKENS=1, CAREERS_RATE_LIMIT_TOKENS=1)
    client.post("/api/contact", json=CONTACT)
    assert client.post("/api/contact", json=CONTACT).status_code == 429

    response = client.post(
        "/api/careers",
        data={"name": "Ada", "email": "ada@example.com", "role": "QA"},
        files={"unused": ("note.txt", b"x", "text/plain")},
    )
    assert response.status_code == 200


def test_purge_and_status(client, configure) -> None:
    client.post("/api/contact", json=CONTACT)
    status = client.get("/api/admin/rate-limit/status", headers={"X-API-Key": "k1"})
    assert status.status_code == 200
    assert status.json()["buckets"] == 1

    # nothing is idle yet
    purged = client.post("/api/admin/rate-limit/purge", headers={"X-API-Key": "k1"})
    assert purged.json() == {"evicted": 0}

    configure(RATE_LIMIT_IDLE_TTL_SECONDS=0)
    purged = client.post("/api/admin/rate-limit/purge", headers={"X-API-Key": "k1"})
    assert purged.json() == {"evicted": 1}


def test_untrusted_forwarded_header_cannot_mint_buckets(client, configure) -> None:
    configure(CONTACT_RATE_LIMIT_TOKENS=1, TRUST_FORWARDED_HEADERS=False)

    first = client.post("/api/contact", json=CONTACT, headers={"X-Forwarded-For": "203.0.113.1"})
    second = client.post("/api/contact", json=CONTACT, headers={"X-Forwarded-For": "203.0.113.2"})

    assert first.status_code == 200
    assert second.status_code == 429


def test_metrics_label_by_route_template(client) -> None:
    client.get("/api/products/some-unlisted-slug")
    client.get("/definitely/not/here")

    body = client.get("/metrics").text

    assert 'path="/api/products/{slug}"' in body
    assert "some-unlisted-slug" not in body
    assert 'path="<unmatched>"' in body
    assert "/definitely/not/here" not in body

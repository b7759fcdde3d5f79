from __future__ import annotations

from pharmasite.store import save_application

ADMIN = {"Authorization": "Bearer test-admin"}


def test_media_crud(client) -> None:
    news = client.post(
        "/api/media",
        json={"type": "news", "title": "New plant opens", "published_at": 200},
        headers=ADMIN,
    )
    event = client.post(
        "/api/media",
        json={"type": "event", "title": "Pharma expo", "published_at": 100},
        headers=ADMIN,
    )
    assert news.status_code == 201
    assert event.status_code == 201

    all_posts = client.get("/api/media").json()
    assert [p["title"] for p in all_posts] == ["New plant opens", "Pharma expo"]
    only_events = client.get("/api/media", params={"type": "event"}).json()
    assert [p["type"] for p in only_events] == ["event"]

    post_id = news.json()["id"]
    updated = client.put(
        "/api/media", params={"id": post_id}, json={"title": "Plant opened"}, headers=ADMIN
    )
    assert updated.json()["title"] == "Plant opened"

    assert client.delete("/api/media", params={"id": post_id}, headers=ADMIN).json() == {
        "success": True
    }
    assert client.delete("/api/media", headers=ADMIN).json() == {"error": "Post ID is required"}
    assert client.delete("/api/media", params={"id": post_id}, headers=ADMIN).status_code == 404


def test_media_validation(client) -> None:
    response = client.post("/api/media", json={"type": "podcast"}, headers=ADMIN)

    assert response.status_code == 422
    assert len(response.json()["errors"]) == 2
    assert client.get("/api/media", params={"type": "podcast"}).status_code == 400


def test_applications_admin_flow(client) -> None:
    first = save_application({"name": "A", "email": "a@example.com", "role": "QA"})
    save_application({"name": "B", "email": "b@example.com", "role": "Sales"})

    listed = client.get("/api/applications", headers=ADMIN).json()
    qa_only = client.get("/api/applications", params={"role": "QA"}, headers=ADMIN).json()
    assert len(listed) == 2
    assert [a["name"] for a in qa_only] == ["A"]

    missing_id = client.put("/api/applications", json={"status": "reviewed"}, headers=ADMIN)
    assert missing_id.json() == {"error": "Application ID is required"}

    no_status = client.put(
        "/api/applications", params={"id": first["id"]}, json={}, headers=ADMIN
    )
    assert no_status.json() == {"error": "Status is required"}

    updated = client.put(
        "/api/applications",
        params={"id": first["id"]},
        json={"status": "shortlisted"},
        headers=ADMIN,
    )
    assert updated.json()["status"] == "shortlisted"

    deleted = client.delete("/api/applications", params={"id": first["id"]}, headers=ADMIN)
    assert deleted.json() == {"message": "Application deleted successfully"}
    assert len(client.get("/api/applications", headers=ADMIN).json()) == 1


def test_media_text_fields_are_type_checked(client) -> None:
    response = client.post(
        "/api/media",
        json={"type": "news", "title": "Launch", "body": {"html": "<p>"}, "image_url": 3},
        headers=ADMIN,
    )

    assert response.status_code == 422
    assert response.json()["errors"] == [
        "body must be a string or null",
        "image_url must be a string or null",
    ]

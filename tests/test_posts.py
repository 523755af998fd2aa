"""
Post endpoint tests — CRUD lifecycle, publication flags, the featured
swap, image uploads and the response envelope.

Posts are created through the multipart API so every test exercises the
real transcode-and-upload path against the in-memory bucket.
"""
from datetime import datetime, timezone

import pytest
from httpx import AsyncClient

from app.config import settings
from conftest import auth_headers, create_user, fetch_post, image_bytes


async def _create_post(
    client: AsyncClient,
    headers: dict,
    title: str = "Hello, World! #1",
    category: str = "news",
    gallery: list[str] | None = None,
) -> dict:
    files = [("index", ("cover.png", image_bytes(), "image/png"))]
    for name in gallery or []:
        files.append(("images[]", (name, image_bytes(400, 300), "image/png")))
    resp = await client.post(
        "/posts",
        data={
            "title": title,
            "description": "A short teaser",
            "content": "<p>Body</p>",
            "category": category,
        },
        files=files,
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    return body["data"]


# ---------------------------------------------------------------------------
# Health / auth guard
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_admin_routes_require_token(async_client: AsyncClient):
    resp = await async_client.get("/posts")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Not authenticated :("}


@pytest.mark.asyncio
async def test_response_carries_diagnostic_headers(async_client: AsyncClient, headers: dict):
    resp = await async_client.get("/posts", headers=headers)
    assert "x-response-time-ms" in resp.headers
    assert int(resp.headers["x-query-count"]) >= 1


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_post_stores_row_and_images(async_client: AsyncClient, headers: dict, bucket):
    post = await _create_post(async_client, headers, gallery=["beach.jpg", "team.photo.png"])

    today = datetime.now(timezone.utc).strftime("%Y_%m_%d")
    assert post["slug"] == f"{today}/news/hello-world-1"
    assert post["published"] is False
    assert post["featured"] is False

    pid = post["id"]
    assert post["images"] == [f"{pid}/index.webp", f"{pid}/beach.webp", f"{pid}/team.webp"]
    cover = bucket.objects[f"{pid}/index.webp"]
    assert cover["content_type"] == "image/webp"
    assert cover["cache_control"] == "public, max-age=31536000"
    assert cover["data"][:4] == b"RIFF"


@pytest.mark.asyncio
async def test_create_post_without_cover_is_rejected(async_client: AsyncClient, headers: dict):
    resp = await async_client.post(
        "/posts",
        data={"title": "T", "description": "D", "content": "C", "category": "news"},
        headers=headers,
    )
    assert resp.status_code == 422
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_create_post_upload_failure_reports_500_and_rolls_back(
    async_client: AsyncClient, headers: dict, bucket
):
    bucket.fail_uploads = True
    resp = await async_client.post(
        "/posts",
        data={"title": "Doomed", "description": "D", "content": "C", "category": "news"},
        files=[("index", ("cover.png", image_bytes(), "image/png"))],
        headers=headers,
    )
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Failed to create post :("}

    bucket.fail_uploads = False
    listing = await async_client.get("/posts", headers=headers)
    assert listing.json()["data"] == []


@pytest.mark.asyncio
async def test_create_post_with_non_image_cover_fails(async_client: AsyncClient, headers: dict):
    resp = await async_client.post(
        "/posts",
        data={"title": "Bad", "description": "D", "content": "C", "category": "news"},
        files=[("index", ("cover.png", b"definitely not an image", "image/png"))],
        headers=headers,
    )
    assert resp.status_code == 500
    assert resp.json()["message"] == "Failed to create post :("


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_post(async_client: AsyncClient, headers: dict):
    post = await _create_post(async_client, headers)
    resp = await async_client.get(f"/posts/{post['id']}", headers=headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["title"] == "Hello, World! #1"
    assert data["content"] == "<p>Body</p>"


@pytest.mark.asyncio
async def test_get_missing_post_returns_404(async_client: AsyncClient, headers: dict):
    resp = await async_client.get("/posts/999", headers=headers)
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Post not found :("}


@pytest.mark.asyncio
async def test_admin_list_shows_state_author_and_date(async_client: AsyncClient, headers: dict):
    draft = await _create_post(async_client, headers, title="Draft")
    live = await _create_post(async_client, headers, title="Live")
    star = await _create_post(async_client, headers, title="Star")
    await async_client.post(f"/posts/publish/{live['id']}", headers=headers)
    await async_client.post(f"/posts/publish/{star['id']}", headers=headers)
    await async_client.post(f"/posts/make_featured/{star['id']}", headers=headers)

    resp = await async_client.get("/posts", headers=headers)
    rows = resp.json()["data"]
    assert [r["id"] for r in rows] == [draft["id"], live["id"], star["id"]]
    assert [r["state"] for r in rows] == ["draft", "published", "published (featured)"]
    assert all(r["author"] == "Site Admin" for r in rows)
    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    assert all(r["date"] == today for r in rows)


@pytest.mark.asyncio
async def test_public_list_only_published_and_needs_no_token(async_client: AsyncClient, headers: dict):
    await _create_post(async_client, headers, title="Hidden")
    live = await _create_post(async_client, headers, title="Visible")
    await async_client.post(f"/posts/publish/{live['id']}", headers=headers)

    resp = await async_client.get("/posts/public")
    assert resp.status_code == 200
    rows = resp.json()["data"]
    assert len(rows) == 1
    row = rows[0]
    assert row["title"] == "Visible"
    assert row["content"] == "<p>Body</p>"
    assert row["author"] == "Site Admin"
    assert row["featured"] is False
    assert "state" not in row


# ---------------------------------------------------------------------------
# Edit
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_edit_post_overwrites_body_but_not_title(async_client: AsyncClient, headers: dict, bucket):
    post = await _create_post(async_client, headers, gallery=["old.png"])
    resp = await async_client.put(
        f"/posts/{post['id']}",
        data={
            "title": "Renamed",
            "category": "events",
            "description": "New teaser",
            "content": "<p>New body</p>",
        },
        files=[("images[]", ("extra.jpg", image_bytes(300, 200, "JPEG"), "image/jpeg"))],
        headers=headers,
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["title"] == "Hello, World! #1"
    assert data["category"] == "news"
    assert data["slug"] == post["slug"]
    assert data["description"] == "New teaser"
    assert data["content"] == "<p>New body</p>"

    # additive: the earlier gallery image survives
    assert f"{post['id']}/old.webp" in bucket.objects
    assert f"{post['id']}/extra.webp" in bucket.objects


@pytest.mark.asyncio
async def test_edit_missing_post_returns_404(async_client: AsyncClient, headers: dict):
    resp = await async_client.put(
        "/posts/42", data={"description": "d", "content": "c"}, headers=headers
    )
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Publish / deactivate / featured
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_publish_and_deactivate(async_client: AsyncClient, headers: dict):
    post = await _create_post(async_client, headers)

    resp = await async_client.post(f"/posts/publish/{post['id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert (await fetch_post(post["id"])).published is True

    resp = await async_client.post(f"/posts/deactivate/{post['id']}", headers=headers)
    assert resp.status_code == 200
    assert (await fetch_post(post["id"])).published is False


@pytest.mark.asyncio
@pytest.mark.parametrize("action", ["publish", "deactivate", "make_featured"])
async def test_flag_actions_on_missing_post_return_404(
    async_client: AsyncClient, headers: dict, action: str
):
    resp = await async_client.post(f"/posts/{action}/12345", headers=headers)
    assert resp.status_code == 404
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_make_featured_moves_the_flag(async_client: AsyncClient, headers: dict):
    first = await _create_post(async_client, headers, title="First")
    second = await _create_post(async_client, headers, title="Second")

    await async_client.post(f"/posts/make_featured/{first['id']}", headers=headers)
    resp = await async_client.post(f"/posts/make_featured/{second['id']}", headers=headers)
    assert resp.status_code == 200

    assert (await fetch_post(first["id"])).featured is False
    assert (await fetch_post(second["id"])).featured is True


@pytest.mark.asyncio
async def test_make_featured_twice_is_a_noop(async_client: AsyncClient, headers: dict):
    post = await _create_post(async_client, headers)
    for _ in range(2):
        resp = await async_client.post(f"/posts/make_featured/{post['id']}", headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
    assert (await fetch_post(post["id"])).featured is True


# ---------------------------------------------------------------------------
# Upload single image
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_upload_single_image(async_client: AsyncClient, headers: dict, bucket):
    post = await _create_post(async_client, headers)
    resp = await async_client.post(
        f"/posts/upload_image/{post['id']}",
        files={"image": ("inline-figure.gif", image_bytes(120, 80, "GIF"), "image/gif")},
        headers=headers,
    )
    assert resp.status_code == 200
    path = f"{post['id']}/inline-figure.webp"
    assert resp.json() == {"success": True, "filename": path}
    assert bucket.objects[path]["cache_control"] is None


@pytest.mark.asyncio
async def test_upload_image_to_missing_post(async_client: AsyncClient, headers: dict, bucket):
    resp = await async_client.post(
        "/posts/upload_image/77",
        files={"image": ("x.png", image_bytes(10, 10), "image/png")},
        headers=headers,
    )
    assert resp.status_code == 404
    assert bucket.objects == {}


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_post_purges_images_when_enabled(
    async_client: AsyncClient, headers: dict, bucket, monkeypatch
):
    monkeypatch.setattr(settings, "PURGE_POST_IMAGES_ON_DELETE", True)
    post = await _create_post(async_client, headers, gallery=["a.png"])
    other = await _create_post(async_client, headers, title="Other")

    resp = await async_client.delete(f"/posts/{post['id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"success": True}

    resp = await async_client.get(f"/posts/{post['id']}", headers=headers)
    assert resp.status_code == 404
    assert not any(k.startswith(f"{post['id']}/") for k in bucket.objects)
    assert f"{other['id']}/index.webp" in bucket.objects


@pytest.mark.asyncio
async def test_delete_post_keeps_images_by_default(async_client: AsyncClient, headers: dict, bucket):
    post = await _create_post(async_client, headers)

    resp = await async_client.delete(f"/posts/{post['id']}", headers=headers)
    assert resp.status_code == 200
    assert await fetch_post(post["id"]) is None
    assert f"{post['id']}/index.webp" in bucket.objects
    assert bucket.delete_attempts == []


@pytest.mark.asyncio
async def test_delete_missing_post_returns_404(async_client: AsyncClient, headers: dict):
    resp = await async_client.delete("/posts/31337", headers=headers)
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Post not found :("}


@pytest.mark.asyncio
async def test_posts_survive_author_deletion(async_client: AsyncClient, headers: dict):
    author = await create_user(username="writer", fullname="Writer")
    post = await _create_post(async_client, auth_headers(author))
    await async_client.delete(f"/users/{author.id}", headers=headers)

    resp = await async_client.get(f"/posts/{post['id']}", headers=headers)
    assert resp.status_code == 200

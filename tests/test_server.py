"""
Tests for the web application in social.bonjour.card.app

Runs the application against the test database and exercises the publish
endpoint, the public card pages and JSON reads, blob serving and the internal
endpoints, including identity token verification.
"""

from unittest.mock import patch

from jwcrypto import jwk

from social.bonjour.card.app.config import MetricsClientAppKey
from social.bonjour.card.app.util.__main__ import gen_jwk, mint_identity_token
from social.bonjour.card.content.store import compute_ref
from tests.test_helpers import (
    ALICE,
    BOB,
    PNG_BYTES,
    TEST_BASE_URL,
    bearer_headers,
    sample_publish_body,
)


class TestInternalEndpoints:
    async def test_alive(self, client):
        response = await client.get("/internal/alive")
        assert response.status == 200

    async def test_ready(self, client):
        response = await client.get("/internal/ready")
        assert response.status == 200

    async def test_me_requires_token(self, client):
        response = await client.get("/internal/api/me")
        assert response.status == 401

    async def test_me(self, client, signing_key):
        """The form learns whether the wallet already holds a handle."""
        headers = bearer_headers(signing_key, ALICE)

        response = await client.get("/internal/api/me", headers=headers)
        assert response.status == 200
        assert await response.json() == {
            "identity": ALICE,
            "handle": None,
            "published": False,
            "public_url": None,
        }

        await client.post(
            "/api/publish", json=sample_publish_body("alice"), headers=headers
        )

        response = await client.get("/internal/api/me", headers=headers)
        assert await response.json() == {
            "identity": ALICE,
            "handle": "alice",
            "published": True,
            "public_url": f"{TEST_BASE_URL}/alice.html",
        }


class TestIdentityTokens:
    """Publishing requires an identity token signed by a configured key."""

    async def test_publish_without_token(self, client):
        response = await client.post("/api/publish", json=sample_publish_body())
        assert response.status == 401

    async def test_publish_with_malformed_token(self, client):
        response = await client.post(
            "/api/publish",
            json=sample_publish_body(),
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status == 401
        assert (await response.json())["error"] == "error-auth-helper-1000"

    async def test_publish_with_unknown_key(self, client):
        response = await client.post(
            "/api/publish",
            json=sample_publish_body(),
            headers=bearer_headers(gen_jwk(), ALICE),
        )
        assert response.status == 401

    async def test_publish_with_expired_token(self, client, signing_key):
        key_set = jwk.JWKSet()
        key_set.add(signing_key)
        token = mint_identity_token(key_set, ALICE, expires_in=-3600)

        response = await client.post(
            "/api/publish",
            json=sample_publish_body(),
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status == 401


class TestPublish:
    """Test suite for POST /api/publish."""

    async def test_publish(self, client, signing_key):
        response = await client.post(
            "/api/publish",
            json=sample_publish_body("Alice", avatar=PNG_BYTES),
            headers=bearer_headers(signing_key, ALICE),
        )

        assert response.status == 200
        assert await response.json() == {
            "handle": "alice",
            "version": 1,
            "avatar_ref": compute_ref(PNG_BYTES),
            "public_url": f"{TEST_BASE_URL}/alice.html",
        }

    async def test_publish_taken_handle(self, client, signing_key):
        await client.post(
            "/api/publish",
            json=sample_publish_body("alice"),
            headers=bearer_headers(signing_key, ALICE),
        )

        response = await client.post(
            "/api/publish",
            json=sample_publish_body("alice", title="Bob"),
            headers=bearer_headers(signing_key, BOB),
        )

        assert response.status == 409
        body = await response.json()
        assert body["error"] == "error-handle-1001"

    async def test_publish_second_handle(self, client, signing_key):
        headers = bearer_headers(signing_key, ALICE)
        await client.post(
            "/api/publish", json=sample_publish_body("alice"), headers=headers
        )

        response = await client.post(
            "/api/publish", json=sample_publish_body("alice2"), headers=headers
        )

        assert response.status == 409
        assert (await response.json())["error"] == "error-handle-1002"

    async def test_publish_invalid_fields(self, client, signing_key):
        response = await client.post(
            "/api/publish",
            json=sample_publish_body("alice", description="d" * 1501),
            headers=bearer_headers(signing_key, ALICE),
        )

        assert response.status == 400
        body = await response.json()
        assert body["error"] == "error-profile-1101"
        assert body["details"]["errors"][0]["loc"] == ["description"]

    async def test_publish_invalid_handle(self, client, signing_key):
        response = await client.post(
            "/api/publish",
            json=sample_publish_body("not a handle"),
            headers=bearer_headers(signing_key, ALICE),
        )

        assert response.status == 400
        assert (await response.json())["error"] == "error-handle-1000"

    async def test_publish_invalid_json(self, client, signing_key):
        response = await client.post(
            "/api/publish",
            data=b"{not json",
            headers=bearer_headers(signing_key, ALICE),
        )

        assert response.status == 400
        assert (await response.json())["error"] == "error-profile-1101"

    async def test_publish_invalid_avatar_encoding(self, client, signing_key):
        body = sample_publish_body("alice")
        body["avatar"] = "***"

        response = await client.post(
            "/api/publish", json=body, headers=bearer_headers(signing_key, ALICE)
        )

        assert response.status == 400


class TestPublicPages:
    """Test suite for the public read endpoints."""

    async def publish(self, client, signing_key, **overrides):
        response = await client.post(
            "/api/publish",
            json=sample_publish_body(**overrides),
            headers=bearer_headers(signing_key, ALICE),
        )
        assert response.status == 200
        return await response.json()

    async def test_card_page(self, client, signing_key):
        result = await self.publish(client, signing_key, avatar=PNG_BYTES)

        response = await client.get("/alice.html")

        assert response.status == 200
        assert response.content_type == "text/html"
        text = await response.text()
        assert "Alice" in text
        assert "Builder of small things." in text
        assert "https://github.com/alice" in text
        assert f"/blobs/{result['avatar_ref']}" in text

    async def test_card_page_is_escaped(self, client, signing_key):
        await self.publish(client, signing_key, title="<script>alert(1)</script>")

        text = await (await client.get("/alice.html")).text()

        assert "<script>alert(1)</script>" not in text
        assert "&lt;script&gt;" in text

    async def test_card_page_not_found(self, client):
        response = await client.get("/nobody.html")

        assert response.status == 404
        assert TEST_BASE_URL in await response.text()

    async def test_card_page_case_insensitive(self, client, signing_key):
        await self.publish(client, signing_key)

        response = await client.get("/ALICE.html")
        assert response.status == 200

    async def test_get_handle(self, client, signing_key):
        await self.publish(client, signing_key)
        await self.publish(client, signing_key, title="Alice v2")

        response = await client.get("/api/handles/alice")

        assert response.status == 200
        entry = await response.json()
        assert entry["handle"] == "alice"
        assert entry["owner"] == ALICE
        assert entry["version"] == 2
        assert entry["title"] == "Alice v2"
        assert entry["public_url"] == f"{TEST_BASE_URL}/alice.html"

    async def test_get_unknown_handle(self, client):
        response = await client.get("/api/handles/nobody")

        assert response.status == 404
        assert (await response.json())["error"] == "error-registry-1200"

    async def test_get_history(self, client, signing_key):
        for i in range(1, 4):
            await self.publish(client, signing_key, title=f"v{i}")

        response = await client.get("/api/handles/alice/history")
        assert response.status == 200
        history = await response.json()
        assert [record["version"] for record in history] == [3, 2, 1]
        assert [record["title"] for record in history] == ["v3", "v2", "v1"]

        response = await client.get("/api/handles/alice/history?limit=2")
        assert [record["version"] for record in await response.json()] == [3, 2]

        response = await client.get("/api/handles/alice/history?limit=x")
        assert response.status == 400

    async def test_get_history_unknown_handle(self, client):
        response = await client.get("/api/handles/nobody/history")
        assert response.status == 404

    async def test_get_blob(self, client, signing_key):
        result = await self.publish(client, signing_key, avatar=PNG_BYTES)

        response = await client.get(f"/blobs/{result['avatar_ref']}")

        assert response.status == 200
        assert response.content_type == "image/png"
        assert response.headers["ETag"] == f'"{result["avatar_ref"]}"'
        assert "immutable" in response.headers["Cache-Control"]
        assert await response.read() == PNG_BYTES

    async def test_get_unknown_blob(self, client):
        response = await client.get(f"/blobs/{compute_ref(b'missing')}")
        assert response.status == 404

        response = await client.get("/blobs/not-a-ref")
        assert response.status == 404

    async def test_unknown_route(self, client):
        response = await client.get("/api/unknown")
        assert response.status == 404


class TestRequestMetrics:
    async def test_request_is_counted_by_route(self, client):
        """Request metrics carry the route pattern, not the raw path."""
        metrics_client = client.app[MetricsClientAppKey]

        with patch.object(metrics_client, "increment") as increment:
            await client.get("/nobody.html")

        increment.assert_called_once_with(
            "bonjour.server.request.count",
            1,
            tag_dict={"path": "/{handle}.html", "method": "GET", "status": 404},
        )

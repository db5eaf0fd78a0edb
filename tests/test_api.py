"""
HTTP surface tests.

The application is built without its lifespan and every service is supplied
through dependency overrides, backed by the in-memory fakes.
"""

from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from docsearch_server.api.dependencies import (
    get_document_service,
    get_health_probe,
    get_rate_limiter,
    get_search_service,
)
from docsearch_server.cache.rate_limiter import RateLimiter
from docsearch_server.health.probe import HealthProbe
from docsearch_server.main import create_app

HEADERS = {"X-Tenant-Id": "t1"}


@pytest.fixture
def limiter(fake_redis):
    return RateLimiter(fake_redis, limit=100, window_seconds=60)


@pytest.fixture
def app(documents, search_service, limiter, store, index, fake_redis, channel):
    app = create_app(with_lifespan=False)
    app.dependency_overrides[get_document_service] = lambda: documents
    app.dependency_overrides[get_search_service] = lambda: search_service
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_health_probe] = lambda: HealthProbe(
        store, index, fake_redis, channel, timeout_seconds=0.2
    )
    yield app
    app.dependency_overrides = {}


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def create(client, title="Hello", content="World", headers=HEADERS, **extra):
    return await client.post(
        "/api/v1/documents",
        json={"title": title, "content": content, **extra},
        headers=headers,
    )


# ---------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------

class TestDocumentRoutes:
    async def test_create(self, client):
        resp = await create(client, metadata={"lang": "en"})

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "INDEXING"
        assert body["tenantId"] == "t1"
        assert body["metadata"] == {"lang": "en"}
        assert "createdAt" in body

    async def test_create_then_index_then_get(self, client, documents):
        doc_id = (await create(client)).json()["id"]

        await documents.process_index_task(UUID(doc_id))

        resp = await client.get(f"/api/v1/documents/{doc_id}", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["status"] == "INDEXED"

    async def test_missing_tenant_header(self, client):
        resp = await create(client, headers={})

        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"

    async def test_malformed_tenant_header(self, client):
        resp = await create(client, headers={"X-Tenant-Id": "bad tenant!"})
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Invalid tenant_id")

    async def test_blank_title(self, client):
        resp = await create(client, title="   ")

        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"

    async def test_malformed_body(self, client):
        resp = await client.post(
            "/api/v1/documents",
            content=b"{not json",
            headers={**HEADERS, "Content-Type": "application/json"},
        )
        assert resp.status_code == 400

    async def test_other_tenant_gets_404(self, client):
        doc_id = (await create(client)).json()["id"]

        resp = await client.get(f"/api/v1/documents/{doc_id}", headers={"X-Tenant-Id": "t2"})

        assert resp.status_code == 404
        assert resp.json() == {"error": "not_found", "detail": f"Document {doc_id} not found"}

    async def test_invalid_id(self, client):
        resp = await client.get("/api/v1/documents/not-a-uuid", headers=HEADERS)
        assert resp.status_code == 400

    async def test_delete(self, client):
        doc_id = (await create(client)).json()["id"]

        resp = await client.delete(f"/api/v1/documents/{doc_id}", headers=HEADERS)
        assert resp.status_code == 204

        resp = await client.get(f"/api/v1/documents/{doc_id}", headers=HEADERS)
        assert resp.status_code == 404

        resp = await client.delete(f"/api/v1/documents/{doc_id}", headers=HEADERS)
        assert resp.status_code == 404

    async def test_store_outage_is_503(self, client, store):
        store.unavailable = True

        resp = await client.get(f"/api/v1/documents/{uuid4()}", headers=HEADERS)

        assert resp.status_code == 503
        assert resp.json()["error"] == "dependency_unavailable"

    async def test_unexpected_error_is_500(self, client, app):
        broken = AsyncMock()
        broken.get.side_effect = RuntimeError("secret internals")
        app.dependency_overrides[get_document_service] = lambda: broken

        resp = await client.get(f"/api/v1/documents/{uuid4()}", headers=HEADERS)

        assert resp.status_code == 500
        assert resp.json() == {"error": "internal_server_error", "detail": "Internal server error"}


# ---------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------

class TestRateLimiting:
    async def test_third_request_is_rejected(self, client, fake_redis, app):
        app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(
            fake_redis, limit=2, window_seconds=60
        )

        codes = [(await create(client)).status_code for _ in range(3)]

        assert codes == [201, 201, 429]

    async def test_rejection_carries_retry_after(self, client, fake_redis, app):
        app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(
            fake_redis, limit=0, window_seconds=60
        )

        resp = await client.get("/api/v1/search", params={"tenant": "t1"})

        assert resp.status_code == 429
        assert resp.json()["error"] == "rate_limited"
        assert 1 <= int(resp.headers["Retry-After"]) <= 60

    async def test_counter_outage_admits(self, client, fake_redis):
        fake_redis.fail = True

        resp = await create(client)

        assert resp.status_code == 201


# ---------------------------------------------------------------------
# Search & health
# ---------------------------------------------------------------------

class TestSearchRoutes:
    async def test_search_after_indexing(self, client, documents):
        doc_id = (await create(client, title="Hello", content="World")).json()["id"]
        await create(client, title="Hello", content="World", headers={"X-Tenant-Id": "t2"})
        await documents.process_index_task(UUID(doc_id))

        resp = await client.get("/api/v1/search", params={"q": "hello", "tenant": "t1"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 1
        assert body["page"] == 1
        assert body["size"] == 1
        assert body["results"][0]["id"] == doc_id
        assert body["results"][0]["snippet"] == "World"

    async def test_tenant_from_header(self, client):
        resp = await client.get("/api/v1/search", params={"q": "x"}, headers=HEADERS)
        assert resp.status_code == 200

    async def test_tenant_required(self, client):
        resp = await client.get("/api/v1/search", params={"q": "x"})
        assert resp.status_code == 400

    @pytest.mark.parametrize("params", [{"page": 0}, {"size": 1000}, {"page": "abc"}, {"sort": "nope"}])
    async def test_invalid_paging(self, client, params):
        resp = await client.get("/api/v1/search", params={"tenant": "t1", **params})
        assert resp.status_code == 400


class TestHealthRoute:
    async def test_up(self, client):
        resp = await client.get("/api/v1/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "UP"
        assert set(resp.json()["checks"]) == {"postgresql", "elasticsearch", "redis", "messaging"}

    async def test_down_is_still_200(self, client, store):
        store.unavailable = True

        resp = await client.get("/api/v1/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "DOWN"
        assert resp.json()["checks"]["postgresql"] == "DOWN"

"""HTTP API tests: auth, error envelope, rate-limit headers, request ids."""

from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from enrichment.api.app import create_app
from enrichment.api.dependencies import MAX_PAYLOAD_SIZE
from enrichment.config import Settings
from enrichment.errors import AuthenticationError, AuthorizationError
from enrichment.orchestrator import EnrichmentServices

from conftest import (
    EXTRACTION_JSON,
    RESEARCH_TEXT,
    TENANT_ID,
    FakeChatModel,
    make_identity,
    make_services,
    make_settings,
)

AUTH = {"Authorization": "Bearer test-token", "X-Tenant-Id": TENANT_ID}
BODY = {"urls": ["https://www.acme.com"]}


def _services(settings: Optional[Settings] = None, **kwargs: Any) -> EnrichmentServices:
    settings = settings or make_settings()
    kwargs.setdefault("research", FakeChatModel(RESEARCH_TEXT))
    kwargs.setdefault("extraction", FakeChatModel(EXTRACTION_JSON))
    return make_services(settings, **kwargs)


def _client(services: EnrichmentServices, settings: Optional[Settings] = None, **kwargs: Any) -> TestClient:
    return TestClient(create_app(settings or make_settings(), services), **kwargs)


class TestEnrichEndpoint:
    def test_success_envelope(self) -> None:
        with _client(_services()) as client:
            resp = client.post("/enrich", json=BODY, headers=AUTH)
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["provider"] == "primary"
        assert body["cached"] is False
        assert body["isFallback"] is False
        assert body["confidence"] == 1.0
        assert body["requestId"] == resp.headers["X-Request-Id"]
        enrichment = body["enrichment"]
        assert enrichment["foundedYear"] == "2010"
        assert enrichment["aiGenerated"] is True
        assert enrichment["socialLinks"]["linkedin"] == "https://www.linkedin.com/company/acme"
        assert "durationMs" in body

    def test_second_call_served_from_cache(self) -> None:
        with _client(_services()) as client:
            client.post("/enrich", json=BODY, headers=AUTH)
            resp = client.post("/enrich", json={"urls": ["acme.com"]}, headers=AUTH)
        body = resp.json()
        assert body["cached"] is True
        assert body["provider"] == "cache"

    def test_incoming_request_id_is_echoed(self) -> None:
        with _client(_services()) as client:
            resp = client.post("/enrich", json=BODY, headers={**AUTH, "X-Request-Id": "caller-123"})
        assert resp.headers["X-Request-Id"] == "caller-123"
        assert resp.json()["requestId"] == "caller-123"

    def test_unsafe_request_id_is_replaced(self) -> None:
        with _client(_services()) as client:
            resp = client.post("/enrich", json=BODY, headers={**AUTH, "X-Request-Id": "bad id <script>"})
        assert resp.headers["X-Request-Id"].startswith("enr-")


class TestAuth:
    def test_missing_token(self) -> None:
        with _client(_services()) as client:
            resp = client.post("/enrich", json=BODY, headers={"X-Tenant-Id": TENANT_ID})
        assert resp.status_code == 401
        body = resp.json()
        assert body == {
            "success": False,
            "error": "Missing authorization header",
            "code": "auth_error",
            "requestId": resp.headers["X-Request-Id"],
        }

    def test_non_bearer_scheme(self) -> None:
        with _client(_services()) as client:
            resp = client.post("/enrich", json=BODY, headers={**AUTH, "Authorization": "Basic abc"})
        assert resp.status_code == 401

    @pytest.mark.parametrize(
        "tenant, code",
        [(None, "missing_tenant"), ("not-a-uuid", "invalid_tenant")],
    )
    def test_tenant_header(self, tenant: Optional[str], code: str) -> None:
        headers = {"Authorization": "Bearer test-token"}
        if tenant is not None:
            headers["X-Tenant-Id"] = tenant
        with _client(_services()) as client:
            resp = client.post("/enrich", json=BODY, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == code

    def test_rejected_token(self) -> None:
        identity = make_identity()
        identity.authenticate.side_effect = AuthenticationError("Invalid or expired token")
        with _client(_services(identity=identity)) as client:
            resp = client.post("/enrich", json=BODY, headers=AUTH)
        assert resp.status_code == 401

    def test_not_a_member(self) -> None:
        identity = make_identity()
        identity.authenticate.side_effect = AuthorizationError("Not a member of this tenant")
        with _client(_services(identity=identity)) as client:
            resp = client.post("/enrich", json=BODY, headers=AUTH)
        assert resp.status_code == 403
        assert resp.json()["code"] == "forbidden"

    def test_token_and_tenant_forwarded_to_identity(self) -> None:
        identity = make_identity()
        with _client(_services(identity=identity)) as client:
            client.post("/enrich", json=BODY, headers=AUTH)
        identity.authenticate.assert_awaited_once_with("test-token", TENANT_ID)


class TestErrors:
    def test_empty_urls(self) -> None:
        with _client(_services()) as client:
            resp = client.post("/enrich", json={"urls": []}, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

    def test_oversized_body_rejected_before_auth(self) -> None:
        identity = make_identity()
        padding = "x" * (MAX_PAYLOAD_SIZE + 100)
        payload = f'{{"urls": ["https://www.acme.com"], "note": "{padding}"}}'
        with _client(_services(identity=identity)) as client:
            resp = client.post(
                "/enrich",
                content=payload,
                headers={**AUTH, "Content-Type": "application/json"},
            )
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "payload_too_large"
        assert str(MAX_PAYLOAD_SIZE) in body["error"]
        identity.authenticate.assert_not_awaited()

    def test_small_body_is_accepted(self) -> None:
        with _client(_services()) as client:
            resp = client.post("/enrich", json=BODY, headers=AUTH)
        assert resp.status_code == 200

    def test_internal_url_blocked(self) -> None:
        with _client(_services()) as client:
            resp = client.post("/enrich", json={"urls": ["http://192.168.1.10"]}, headers=AUTH)
        assert resp.status_code == 400
        assert resp.json()["code"] == "ssrf_blocked"

    def test_rate_limited(self) -> None:
        settings = make_settings(per_minute=1)
        with _client(_services(settings), settings) as client:
            first = client.post("/enrich", json={**BODY, "useCache": False}, headers=AUTH)
            second = client.post("/enrich", json={**BODY, "useCache": False}, headers=AUTH)
        assert first.status_code == 200
        assert second.status_code == 429
        assert second.json()["code"] == "rate_limit"
        assert int(second.headers["Retry-After"]) >= 1
        assert second.headers["X-RateLimit-Limit"] == "1"
        assert second.headers["X-RateLimit-Remaining"] == "0"

    def test_not_configured(self) -> None:
        services = make_services(make_settings())
        with _client(services) as client:
            resp = client.post("/enrich", json=BODY, headers=AUTH)
        assert resp.status_code == 503
        assert resp.json()["code"] == "not_configured"

    def test_unexpected_error_is_generic_500(self) -> None:
        identity = make_identity()
        identity.authenticate.side_effect = RuntimeError("database exploded")
        with _client(_services(identity=identity), raise_server_exceptions=False) as client:
            resp = client.post("/enrich", json=BODY, headers=AUTH)
        assert resp.status_code == 500
        body = resp.json()
        assert body["code"] == "internal_error"
        assert "exploded" not in body["error"]


class TestOtherRoutes:
    def test_invalidate_cache(self) -> None:
        with _client(_services()) as client:
            client.post("/enrich", json=BODY, headers=AUTH)
            resp = client.delete("/enrich/cache", params={"url": "acme.com"}, headers=AUTH)
            again = client.post("/enrich", json=BODY, headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["deleted"] is True
        assert again.json()["cached"] is False

    def test_health(self) -> None:
        with _client(_services(make_settings(search_key="brave_test_key"))) as client:
            resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {
            "status": "ok",
            "store": "ok",
            "providers": {"ai_search": True, "web_search": True},
        }

    def test_metrics_disabled(self) -> None:
        with _client(_services()) as client:
            assert client.get("/metrics").status_code == 404

"""
Tests for API health and basic endpoints.
"""

import pytest
from fastapi.testclient import TestClient


class TestHealthEndpoints:
    """Test basic health and status endpoints"""

    @pytest.mark.unit
    def test_root_endpoint(self, client: TestClient):
        """Test root endpoint returns API info"""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Vault QA API"
        assert data["version"] == "1.0.0"
        assert data["docs"] == "/docs"

    @pytest.mark.unit
    def test_health_check(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.unit
    def test_openapi_lists_item_qa_routes(self, client: TestClient):
        """Test OpenAPI schema exposes the QA endpoints"""
        response = client.get("/openapi.json")
        assert response.status_code == 200
        paths = response.json()["paths"]
        for path in ("/api/item-qa/scan", "/api/item-qa/reports", "/api/item-qa/repair/deep", "/api/item-qa/export"):
            assert path in paths


class TestCORS:
    """Test CORS configuration"""

    @pytest.mark.unit
    def test_allowed_origin(self, client: TestClient):
        response = client.options(
            "/health",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert response.headers.get("access-control-allow-origin") == "http://localhost:3000"

    @pytest.mark.unit
    def test_unknown_origin_not_echoed(self, client: TestClient):
        response = client.options(
            "/health",
            headers={
                "Origin": "http://evil.example.com",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert response.headers.get("access-control-allow-origin") != "http://evil.example.com"

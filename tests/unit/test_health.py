"""Unit tests for the /healthz probe."""

from __future__ import annotations

from starlette.testclient import TestClient

from edge.config import Config
from edge.health import HEALTH_OK_BODY, HEALTH_PATH


class TestHealthz:
    def test_returns_ok_json(self, build_app, mock_origin) -> None:
        with TestClient(build_app()) as client:
            response = client.get(HEALTH_PATH)

        assert response.status_code == 200
        assert response.json() == HEALTH_OK_BODY
        assert response.headers["content-type"].startswith("application/json")
        # answered locally: nothing reached the origin
        assert mock_origin.requests == []

    def test_does_not_touch_render_handler(self, build_app, render_handler) -> None:
        with TestClient(build_app()) as client:
            client.get(HEALTH_PATH)
        assert render_handler.calls == []

    def test_exempt_from_https_redirect(self, build_app) -> None:
        config = Config.defaults()
        config.server.trust_proxy = True
        with TestClient(build_app(config)) as client:
            response = client.get(
                HEALTH_PATH, headers={"x-forwarded-proto": "http"}, follow_redirects=False
            )
        assert response.status_code == 200

    def test_carries_security_headers(self, build_app) -> None:
        with TestClient(build_app()) as client:
            response = client.get(HEALTH_PATH)
        assert response.headers["x-frame-options"] == "SAMEORIGIN"
        assert "content-security-policy" in response.headers

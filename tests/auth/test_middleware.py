"""Tests for Basic credential extraction."""

import base64

import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from repo_manager.auth.middleware import BasicAuthMiddleware, parse_basic_authorization
from repo_manager.auth.models import BasicCredentials


def basic(value: str) -> str:
    return "Basic " + base64.b64encode(value.encode()).decode()


class TestParseBasicAuthorization:
    """Test header decoding."""

    def test_no_header(self) -> None:
        assert parse_basic_authorization(None) is None
        assert parse_basic_authorization("") is None

    def test_valid_header(self) -> None:
        assert parse_basic_authorization(basic("alice:secret")) == BasicCredentials(
            "alice", "secret"
        )

    def test_password_may_contain_colons(self) -> None:
        credentials = parse_basic_authorization(basic("alice:a:b:c"))
        assert credentials == BasicCredentials("alice", "a:b:c")

    def test_empty_password(self) -> None:
        credentials = parse_basic_authorization(basic("alice:"))
        assert credentials == BasicCredentials("alice", "")

    def test_scheme_case_insensitive(self) -> None:
        header = basic("alice:secret").replace("Basic", "bAsIc")
        assert parse_basic_authorization(header) == BasicCredentials("alice", "secret")

    @pytest.mark.parametrize(
        "header",
        [
            "Bearer some-token",
            "Basic",
            "Basic !!!not-base64!!!",
            basic("no-separator"),
        ],
    )
    def test_invalid_headers(self, header: str) -> None:
        with pytest.raises(ValueError):
            parse_basic_authorization(header)


class TestBasicAuthMiddleware:
    """Test the middleware against a small Starlette app."""

    def setup_method(self) -> None:
        async def whoami(request: Request) -> PlainTextResponse:
            credentials = request.state.credentials
            if credentials:
                return PlainTextResponse(f"user={credentials.username}")
            return PlainTextResponse("anonymous")

        app = Starlette(
            routes=[Route("/health", whoami), Route("/files", whoami)],
            middleware=[Middleware(BasicAuthMiddleware)],
        )
        self.client = TestClient(app)

    def test_no_credentials(self) -> None:
        response = self.client.get("/files")
        assert response.status_code == 200
        assert response.text == "anonymous"

    def test_credentials_attached(self) -> None:
        response = self.client.get(
            "/files", headers={"Authorization": basic("alice:secret")}
        )
        assert response.status_code == 200
        assert response.text == "user=alice"

    def test_malformed_header_rejected(self) -> None:
        """Test malformed headers get 401 with a Basic challenge."""
        response = self.client.get(
            "/files", headers={"Authorization": "Bearer token"}
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid authorization header"}
        assert response.headers["WWW-Authenticate"].startswith("Basic")

    def test_unprotected_path_ignores_header(self) -> None:
        response = self.client.get(
            "/health", headers={"Authorization": "Bearer token"}
        )
        assert response.status_code == 200
        assert response.text == "anonymous"

"""Tests for provider authorization URLs and code exchange.

Covers:
- Authorization URL parameters (S256 challenge, never the verifier)
- Basic vs. body client authentication
- Provider rejections, including GitHub's HTTP 200 error bodies
- Network failures
"""

import base64
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from zkattest.auth.providers import github_provider, twitter_provider
from zkattest.auth.services.broker import AuthorizationBroker
from zkattest.shared.errors import (
    ProviderConfigurationError,
    ProviderNetworkError,
    ProviderRejectedError,
)

VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def _response(status_code: int, body) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


class TestBuildAuthorizationUrl:
    def setup_method(self):
        # Arrange
        self.broker = AuthorizationBroker(
            twitter_provider("client-123", "secret-456", "http://localhost:5174/callback")
        )

    def test_url_carries_pkce_challenge_and_state(self):
        # Act
        url = self.broker.build_authorization_url(CHALLENGE, "state-abc")

        # Assert
        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == (
            "https://twitter.com/i/oauth2/authorize"
        )
        assert params["response_type"] == ["code"]
        assert params["client_id"] == ["client-123"]
        assert params["redirect_uri"] == ["http://localhost:5174/callback"]
        assert params["code_challenge"] == [CHALLENGE]
        assert params["code_challenge_method"] == ["S256"]
        assert params["state"] == ["state-abc"]
        assert params["scope"] == ["tweet.read users.read"]

    def test_url_never_contains_verifier(self):
        # Act
        url = self.broker.build_authorization_url(CHALLENGE, "state-abc")

        # Assert
        assert VERIFIER not in url
        assert "code_verifier" not in url

    def test_explicit_scope_overrides_default(self):
        # Act
        url = self.broker.build_authorization_url(CHALLENGE, "s", scope="users.read")

        # Assert
        assert parse_qs(urlparse(url).query)["scope"] == ["users.read"]

    def test_github_adds_allow_signup(self):
        # Arrange
        broker = AuthorizationBroker(github_provider("gh-client", "gh-secret"))

        # Act
        params = parse_qs(urlparse(broker.build_authorization_url(CHALLENGE, "s")).query)

        # Assert
        assert params["allow_signup"] == ["true"]
        assert params["scope"] == ["read:user"]

    def test_missing_challenge_is_rejected(self):
        with pytest.raises(ValueError, match="challenge"):
            self.broker.build_authorization_url("", "state-abc")

    def test_missing_client_id_is_misconfiguration(self):
        # Arrange
        broker = AuthorizationBroker(twitter_provider())

        # Act & Assert
        with pytest.raises(ProviderConfigurationError) as exc_info:
            broker.build_authorization_url(CHALLENGE, "state-abc")
        assert exc_info.value.kind == "provider_misconfigured"


class TestExchangeCode:
    def setup_method(self):
        # Arrange
        self.broker = AuthorizationBroker(
            twitter_provider("client-123", "secret-456", "http://localhost:5174/callback")
        )
        self.broker._http_client = AsyncMock()

    async def test_successful_exchange_returns_token(self):
        # Arrange
        self.broker._http_client.post.return_value = _response(
            200,
            {
                "access_token": "access-xyz",
                "token_type": "bearer",
                "expires_in": 7200,
                "scope": "tweet.read users.read",
            },
        )

        # Act
        token = await self.broker.exchange_code("auth-code", VERIFIER)

        # Assert
        assert token.access_token == "access-xyz"
        assert token.scope == "tweet.read users.read"
        assert not token.is_expired()
        assert "access-xyz" not in repr(token)

    async def test_twitter_uses_basic_auth_and_sends_verifier(self):
        # Arrange
        self.broker._http_client.post.return_value = _response(
            200, {"access_token": "access-xyz"}
        )

        # Act
        await self.broker.exchange_code("auth-code", VERIFIER)

        # Assert
        call_args = self.broker._http_client.post.call_args
        assert call_args[0][0] == "https://api.twitter.com/2/oauth2/token"

        form_data = call_args[1]["data"]
        assert form_data["grant_type"] == "authorization_code"
        assert form_data["code"] == "auth-code"
        assert form_data["code_verifier"] == VERIFIER
        assert form_data["redirect_uri"] == "http://localhost:5174/callback"
        assert "client_secret" not in form_data

        expected = base64.b64encode(b"client-123:secret-456").decode("ascii")
        assert call_args[1]["headers"]["Authorization"] == f"Basic {expected}"

    async def test_github_sends_credentials_in_body(self):
        # Arrange
        broker = AuthorizationBroker(github_provider("gh-client", "gh-secret"))
        broker._http_client = AsyncMock()
        broker._http_client.post.return_value = _response(
            200, {"access_token": "gho_abc", "token_type": "bearer", "scope": "read:user"}
        )

        # Act
        await broker.exchange_code("auth-code", VERIFIER)

        # Assert
        call_args = broker._http_client.post.call_args
        form_data = call_args[1]["data"]
        assert form_data["client_id"] == "gh-client"
        assert form_data["client_secret"] == "gh-secret"
        assert "Authorization" not in call_args[1]["headers"]
        assert call_args[1]["headers"]["Accept"] == "application/json"

    async def test_error_response_raises_rejection_with_provider_code(self):
        # Arrange
        self.broker._http_client.post.return_value = _response(
            400,
            {
                "error": "invalid_grant",
                "error_description": "Value passed for the authorization code was invalid.",
            },
        )

        # Act & Assert
        with pytest.raises(ProviderRejectedError) as exc_info:
            await self.broker.exchange_code("reused-code", VERIFIER)

        assert exc_info.value.error_code == "invalid_grant"
        assert exc_info.value.status_code == 400
        assert exc_info.value.to_dict()["provider_error"] == "invalid_grant"

    async def test_error_body_with_200_status_is_rejection(self):
        # Arrange
        broker = AuthorizationBroker(github_provider("gh-client", "gh-secret"))
        broker._http_client = AsyncMock()
        broker._http_client.post.return_value = _response(
            200,
            {
                "error": "bad_verification_code",
                "error_description": "The code passed is incorrect or expired.",
            },
        )

        # Act & Assert
        with pytest.raises(ProviderRejectedError) as exc_info:
            await broker.exchange_code("expired-code", VERIFIER)
        assert exc_info.value.error_code == "bad_verification_code"

    async def test_unreadable_body_is_invalid_response(self):
        # Arrange
        response = MagicMock()
        response.status_code = 502
        response.json.side_effect = ValueError("not json")
        self.broker._http_client.post.return_value = response

        # Act & Assert
        with pytest.raises(ProviderRejectedError) as exc_info:
            await self.broker.exchange_code("auth-code", VERIFIER)
        assert exc_info.value.error_code == "invalid_response"

    async def test_network_failure_raises_network_error(self):
        # Arrange
        self.broker._http_client.post.side_effect = httpx.ConnectError("refused")

        # Act & Assert
        with pytest.raises(ProviderNetworkError) as exc_info:
            await self.broker.exchange_code("auth-code", VERIFIER)
        assert exc_info.value.kind == "network_error"

    async def test_exchange_is_not_retried(self):
        # Arrange
        self.broker._http_client.post.side_effect = httpx.ReadTimeout("slow")

        # Act
        with pytest.raises(ProviderNetworkError):
            await self.broker.exchange_code("auth-code", VERIFIER)

        # Assert
        assert self.broker._http_client.post.await_count == 1

    async def test_missing_code_or_verifier_is_rejected_before_request(self):
        # Act & Assert
        with pytest.raises(ValueError):
            await self.broker.exchange_code("", VERIFIER)
        with pytest.raises(ValueError):
            await self.broker.exchange_code("auth-code", "")

        self.broker._http_client.post.assert_not_awaited()

    async def test_missing_secret_is_misconfiguration(self):
        # Arrange
        broker = AuthorizationBroker(twitter_provider(client_id="client-only"))
        broker._http_client = AsyncMock()

        # Act & Assert
        with pytest.raises(ProviderConfigurationError):
            await broker.exchange_code("auth-code", VERIFIER)
        broker._http_client.post.assert_not_awaited()

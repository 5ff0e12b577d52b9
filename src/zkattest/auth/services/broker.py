"""Provider authorization and token exchange.

Builds provider authorization URLs carrying the PKCE challenge and performs
the RFC 6749 Section 4.1.3 code-for-token exchange server-side, with the
provider-issued client credentials.
"""

from __future__ import annotations

import base64
import logging
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from zkattest.auth.models.providers import ProviderConfig
from zkattest.auth.models.tokens import OAuthToken, TokenResponse
from zkattest.shared.errors import (
    ProviderConfigurationError,
    ProviderNetworkError,
    ProviderRejectedError,
)

logger = logging.getLogger(__name__)


class AuthorizationBroker:
    """Talks to one provider's authorization and token endpoints.

    Token exchange is never retried: the provider consumes the code on the
    first attempt, so a retried POST would legitimately fail. Callers that
    want another try must restart the whole PKCE session.
    """

    def __init__(self, provider: ProviderConfig, timeout: float = 30.0):
        """Initialize the broker.

        Args:
            provider: Endpoints and client credentials of the provider
            timeout: HTTP request timeout in seconds
        """
        self.provider = provider
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)

    def build_authorization_url(
        self, challenge: str, state: str, scope: str | None = None
    ) -> str:
        """Build the URL the user visits to grant access.

        Only the S256 challenge is embedded; the verifier never leaves the
        client.

        Raises:
            ValueError: If challenge or state is missing
            ProviderConfigurationError: If the provider has no client id
        """
        if not challenge:
            raise ValueError("code challenge is required")
        if not state:
            raise ValueError("state is required")
        if not self.provider.client_id:
            raise ProviderConfigurationError(
                f"{self.provider.name} client configuration missing"
            )

        params = {
            "response_type": "code",
            "client_id": self.provider.client_id,
            "redirect_uri": self.provider.redirect_uri,
            "scope": scope or self.provider.default_scope,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "state": state,
        }
        params.update(self.provider.extra_authorization_params)

        url = f"{self.provider.authorization_endpoint}?{urlencode(params)}"
        logger.debug(f"Built {self.provider.name} authorization URL")
        return url

    async def exchange_code(self, code: str, verifier: str) -> OAuthToken:
        """Exchange an authorization code for an access token.

        Args:
            code: Authorization code from the provider callback
            verifier: PKCE code verifier of the session that started the flow

        Returns:
            OAuthToken: Bearer credential for resource calls

        Raises:
            ValueError: If code or verifier is missing
            ProviderConfigurationError: If client credentials are missing
            ProviderRejectedError: If the provider answered with an error
            ProviderNetworkError: If the provider could not be reached
        """
        if not code or not verifier:
            raise ValueError("code and code verifier are required")
        if not self.provider.is_configured():
            raise ProviderConfigurationError(
                f"{self.provider.name} client configuration missing"
            )

        form_data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.provider.redirect_uri,
            "code_verifier": verifier,
        }
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

        if self.provider.token_auth_method == "basic":
            credentials = f"{self.provider.client_id}:{self.provider.client_secret}"
            encoded = base64.b64encode(credentials.encode()).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"
        else:
            form_data["client_id"] = self.provider.client_id
            form_data["client_secret"] = self.provider.client_secret

        logger.debug(
            f"Token request to {self.provider.name}: "
            f"grant_type={form_data['grant_type']}, "
            f"auth_method={self.provider.token_auth_method}"
        )

        try:
            response = await self._http_client.post(
                self.provider.token_endpoint,
                data=form_data,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise ProviderNetworkError(
                f"HTTP error during {self.provider.name} token exchange: {e}"
            ) from e

        return self._parse_token_response(response)

    def _parse_token_response(self, response: httpx.Response) -> OAuthToken:
        """Turn a token endpoint response into a token or a rejection.

        Handles both success (RFC 6749 Section 5.1) and error (Section 5.2)
        bodies. Some providers report errors with HTTP 200, so the body is
        checked as well as the status.
        """
        try:
            token_response = TokenResponse(**response.json())
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(
                f"{self.provider.name} returned an unreadable token response "
                f"({response.status_code})"
            )
            raise ProviderRejectedError(
                f"Invalid token response format: {e}",
                error_code="invalid_response",
                status_code=response.status_code,
            ) from e

        if 200 <= response.status_code < 300 and token_response.is_success():
            logger.info(f"{self.provider.name} token exchange successful")
            return token_response.to_token()

        error_code = token_response.error or "unknown_error"
        error_description = token_response.error_description or "No description provided"
        logger.warning(
            f"{self.provider.name} token exchange failed with "
            f"{response.status_code}: {error_code} - {error_description}"
        )
        raise ProviderRejectedError(
            f"Token exchange rejected: {error_code} ({error_description})",
            error_code=error_code,
            status_code=response.status_code,
        )

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()

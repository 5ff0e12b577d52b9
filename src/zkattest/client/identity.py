"""Client-side login flow against the attestation server.

Coordinates the PKCE session, the server's auth endpoints and the signed
identity attestation, the way a browser client would:

1. ``start_login`` opens a PKCE session and asks the server for the
   provider authorization URL.
2. The user authorizes at the provider and is redirected back.
3. ``complete_login`` consumes the session, has the server exchange the
   code, then fetches and locally verifies the attestation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from zkattest.attestation.models import Attestation, CurvePoint
from zkattest.attestation.signer import verify_attestation
from zkattest.auth.models.flow import AuthorizationResponse
from zkattest.auth.models.tokens import OAuthToken, TokenResponse
from zkattest.auth.primitives.pkce import states_match
from zkattest.auth.services.sessions import PKCESessionManager
from zkattest.shared.errors import (
    AttestationVerificationError,
    ProviderConfigurationError,
    ProviderNetworkError,
    ProviderRejectedError,
    SessionNotFoundError,
    UnauthorizedError,
    UpstreamError,
)
from zkattest.shared.storage import InMemoryStorage, StoragePort

logger = logging.getLogger(__name__)

TOKEN_KEY = "token:{provider}"
ATTESTATION_KEY = "attestation:{provider}"


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a completed login."""

    provider: str
    token: OAuthToken
    attestation: Attestation


class IdentityClient:
    """Drives the login flow from the client side over HTTP."""

    def __init__(
        self,
        server_url: str,
        storage: StoragePort | None = None,
        sessions: PKCESessionManager | None = None,
        trusted_key: CurvePoint | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            server_url: Base URL of the attestation server
            storage: Where tokens and attestations are kept between runs
            sessions: PKCE session manager. Defaults to one sharing storage.
            trusted_key: Authority public key to pin attestations to
            timeout: HTTP request timeout in seconds
        """
        self.server_url = server_url.rstrip("/")
        self._storage = storage if storage is not None else InMemoryStorage()
        self._sessions = sessions or PKCESessionManager(storage=self._storage)
        self.trusted_key = trusted_key
        self._http_client = httpx.AsyncClient(timeout=timeout)

    # ================================
    # Login
    # ================================

    async def start_login(self, provider: str, scope: str | None = None) -> str:
        """Open a PKCE session and return the provider authorization URL."""
        session = self._sessions.begin(provider=provider)

        body: dict[str, Any] = {"challenge": session.challenge, "state": session.state}
        if scope:
            body["scope"] = scope

        try:
            data = await self._request("POST", f"/auth/{provider}/start", json=body)
        except Exception:
            # A session whose URL never reached the user can't be completed
            self._sessions.discard(session.state)
            raise

        logger.info(f"Started {provider} login")
        return data["url"]

    async def complete_login(self, callback_url: str) -> LoginResult:
        """Finish a login from the provider's redirect URL.

        Raises:
            ProviderRejectedError: If the provider reported an error
            SessionError: If the state is unknown, reused or expired
            AttestationVerificationError: If the attestation doesn't verify
        """
        response = AuthorizationResponse.from_callback_url(callback_url)
        if response.state is None:
            raise SessionNotFoundError("Callback is missing the state parameter")

        # Single use: the session is gone whatever happens next
        session = self._sessions.consume_session(response.state)
        if not states_match(session.state, response.state):
            raise SessionNotFoundError("State parameter mismatch")

        if response.is_error() or response.code is None:
            raise ProviderRejectedError(
                f"Authorization failed: {response.error} "
                f"({response.error_description or ''})",
                error_code=response.error or "missing_code",
            )

        provider = session.provider
        if provider is None:
            raise ProviderConfigurationError("Session was not started for a provider")

        token_data = await self._request(
            "POST",
            f"/auth/{provider}/token",
            json={
                "code": response.code,
                "verifier": session.verifier,
                "state": response.state,
            },
        )
        token = TokenResponse(**token_data).to_token()

        attestation = await self.fetch_attestation(provider, token)

        self._storage.set(
            TOKEN_KEY.format(provider=provider), json.dumps(token.to_response())
        )
        self._storage.set(
            ATTESTATION_KEY.format(provider=provider),
            json.dumps(attestation.to_wire()),
        )

        logger.info(f"Completed {provider} login")
        return LoginResult(provider=provider, token=token, attestation=attestation)

    async def fetch_attestation(self, provider: str, token: OAuthToken) -> Attestation:
        """Fetch and verify a signed attestation of the provider identity."""
        data = await self._request(
            "GET",
            "/identity/attestation",
            params={"provider": provider},
            headers=token.authorization_header(),
        )
        attestation = Attestation.from_wire(data)

        if not verify_attestation(attestation, trusted_key=self.trusted_key):
            raise AttestationVerificationError("Attestation signature does not verify")
        return attestation

    # ================================
    # Stored state
    # ================================

    def stored_attestation(self, provider: str) -> Attestation | None:
        """Return the attestation saved by the last login, if any."""
        raw = self._storage.get(ATTESTATION_KEY.format(provider=provider))
        if raw is None:
            return None
        return Attestation.from_wire(json.loads(raw))

    def stored_token(self, provider: str) -> OAuthToken | None:
        raw = self._storage.get(TOKEN_KEY.format(provider=provider))
        if raw is None:
            return None
        return TokenResponse(**json.loads(raw)).to_token()

    def logout(self, provider: str | None = None) -> None:
        """Forget tokens and attestations for one provider or all of them."""
        prefixes = ["token:", "attestation:"]
        for prefix in prefixes:
            for key in self._storage.keys(prefix):
                if provider is None or key == f"{prefix}{provider}":
                    self._storage.remove(key)

    # ================================
    # HTTP
    # ================================

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._http_client.request(
                method, f"{self.server_url}{path}", **kwargs
            )
        except httpx.HTTPError as e:
            raise ProviderNetworkError(f"HTTP error calling {path}: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(
                f"{path} returned a non-JSON body", status_code=response.status_code
            ) from e

        if not isinstance(data, dict):
            raise UpstreamError(
                f"{path} returned {type(data).__name__}, expected an object",
                status_code=response.status_code,
            )

        if response.status_code == 401:
            raise UnauthorizedError(data.get("message", "Unauthorized"))
        if response.status_code >= 400:
            message = data.get("message", f"{path} failed")
            if data.get("error") == "provider_rejected":
                raise ProviderRejectedError(
                    message,
                    error_code=data.get("provider_error", "unknown_error"),
                    status_code=response.status_code,
                )
            raise UpstreamError(message, status_code=response.status_code)
        return data

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()

"""HTTP surface of the attestation authority.

Routes:
    POST /auth/{provider}/start      PKCE challenge -> provider authorization URL
    POST /auth/{provider}/token      code + verifier -> provider token
    GET  /auth/{provider}/resource   bearer token -> provider identity resource
    GET  /identity/attestation       bearer token -> signed attestation
    GET  /health                     liveness and provider configuration
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Sequence

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from zkattest.attestation.keys import EphemeralKeyProvider, KeyProvider, PemKeyProvider
from zkattest.attestation.signer import AttestationSigner
from zkattest.auth.providers import ProviderRegistry, github_provider, twitter_provider
from zkattest.auth.services.broker import AuthorizationBroker
from zkattest.auth.services.resources import ResourceFetcher
from zkattest.server.config import Settings
from zkattest.shared.errors import (
    AttestationError,
    ProviderConfigurationError,
    ProviderError,
    ProviderNetworkError,
    SessionError,
    UnauthorizedError,
    UpstreamError,
    ZkAttestError,
)

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "twitter"

# Most specific first
_STATUS_BY_ERROR: list[tuple[type[ZkAttestError], int]] = [
    (SessionError, 400),
    (UnauthorizedError, 401),
    (UpstreamError, 502),
    (ProviderNetworkError, 503),
    (ProviderConfigurationError, 500),
    (ProviderError, 500),
    (AttestationError, 500),
]


def status_for(error: ZkAttestError) -> int:
    """Map an error to the HTTP status the surface answers with."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def error_response(error: ZkAttestError, status_code: int | None = None) -> JSONResponse:
    if status_code is None:
        status_code = status_for(error)
    return JSONResponse(error.to_dict(), status_code=status_code)


def bad_request(message: str) -> JSONResponse:
    return JSONResponse(
        {"error": "invalid_request", "message": message}, status_code=400
    )


@dataclass
class AuthorityServices:
    """Service objects shared by the request handlers.

    Built once at startup and handed to ``create_app``.
    """

    registry: ProviderRegistry
    signer: AttestationSigner
    brokers: dict[str, AuthorizationBroker] = field(default_factory=dict)
    fetchers: dict[str, ResourceFetcher] = field(default_factory=dict)

    @classmethod
    def build(
        cls, registry: ProviderRegistry, signer: AttestationSigner, timeout: float = 30.0
    ) -> AuthorityServices:
        services = cls(registry=registry, signer=signer)
        for name in registry.names():
            provider = registry.get(name)
            services.brokers[name] = AuthorizationBroker(provider, timeout=timeout)
            services.fetchers[name] = ResourceFetcher(provider, timeout=timeout)
        return services

    def broker(self, name: str) -> AuthorizationBroker:
        """Raises ProviderConfigurationError for an unknown provider."""
        self.registry.get(name)
        return self.brokers[name]

    def fetcher(self, name: str) -> ResourceFetcher:
        self.registry.get(name)
        return self.fetchers[name]

    async def close(self) -> None:
        for broker in self.brokers.values():
            await broker.close()
        for fetcher in self.fetchers.values():
            await fetcher.close()


def build_services(settings: Settings) -> AuthorityServices:
    """Construct providers, HTTP services and the signer from settings."""
    registry = ProviderRegistry(
        [
            twitter_provider(
                settings.twitter_client_id,
                settings.twitter_client_secret,
                settings.twitter_redirect_uri,
            ),
            github_provider(
                settings.github_client_id,
                settings.github_client_secret,
                settings.github_callback_url,
                scope=settings.github_scope,
            ),
        ]
    )
    for name in registry.names():
        if not registry.get(name).is_configured():
            logger.warning(f"{name} client id/secret not set; provider disabled")

    key_provider: KeyProvider
    if settings.signing_key_file:
        password = settings.signing_key_password
        key_provider = PemKeyProvider.from_file(
            settings.signing_key_file,
            password=password.encode() if password else None,
        )
    else:
        key_provider = EphemeralKeyProvider()

    return AuthorityServices.build(
        registry, AttestationSigner(key_provider), timeout=settings.http_timeout
    )


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def _json_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def create_app(
    services: AuthorityServices,
    cors_origins: Sequence[str] = ("http://localhost:5173",),
) -> Starlette:
    """Create the Starlette application around explicit service objects."""

    async def start_authorization(request: Request) -> JSONResponse:
        provider = request.path_params["provider"]
        body = await _json_body(request)
        if body is None:
            return bad_request("Request body must be a JSON object")

        challenge = body.get("challenge")
        state = body.get("state")
        if not challenge or not isinstance(challenge, str):
            return bad_request("Code challenge is required")
        if not state or not isinstance(state, str):
            return bad_request("State is required")

        try:
            url = services.broker(provider).build_authorization_url(
                challenge, state, scope=body.get("scope")
            )
        except ZkAttestError as e:
            logger.error(f"Cannot start {provider} authorization: {e}")
            return error_response(e)

        logger.info(f"Issued {provider} authorization URL for state {state[:8]}...")
        return JSONResponse({"url": url})

    async def exchange_token(request: Request) -> JSONResponse:
        provider = request.path_params["provider"]
        body = await _json_body(request)
        if body is None:
            return bad_request("Request body must be a JSON object")

        code = body.get("code")
        verifier = body.get("verifier")
        if not code or not isinstance(code, str):
            return bad_request("Code is required")
        if not verifier or not isinstance(verifier, str):
            return bad_request("Code verifier is required")

        try:
            token = await services.broker(provider).exchange_code(code, verifier)
        except ZkAttestError as e:
            logger.error(f"{provider} token exchange failed: {e.kind}")
            # Every failed exchange is a 500, whatever the provider did
            return error_response(e, status_code=500)

        return JSONResponse(token.to_response())

    async def fetch_resource(request: Request) -> JSONResponse:
        provider = request.path_params["provider"]
        token = _bearer_token(request)
        if token is None:
            return error_response(UnauthorizedError("Invalid authorization header"))

        try:
            resource = await services.fetcher(provider).fetch(token)
        except ZkAttestError as e:
            logger.warning(f"{provider} resource request failed: {e.kind}")
            return error_response(e)

        return JSONResponse(resource)

    async def issue_attestation(request: Request) -> JSONResponse:
        provider = request.query_params.get("provider", DEFAULT_PROVIDER)
        token = _bearer_token(request)
        if token is None:
            return error_response(UnauthorizedError("Invalid authorization header"))

        try:
            resource = await services.fetcher(provider).fetch(token)
            attestation = services.signer.sign(resource)
        except ZkAttestError as e:
            logger.warning(f"Attestation for {provider} failed: {e.kind}")
            return error_response(e)

        return JSONResponse(attestation.to_wire())

    async def health(request: Request) -> JSONResponse:
        providers = {
            name: services.registry.get(name).is_configured()
            for name in services.registry.names()
        }
        return JSONResponse(
            {
                "status": "ok",
                "providers": providers,
                "persistentKey": services.signer.is_persistent,
            }
        )

    routes = [
        Route("/auth/{provider}/start", start_authorization, methods=["POST"]),
        Route("/auth/{provider}/token", exchange_token, methods=["POST"]),
        Route("/auth/{provider}/resource", fetch_resource, methods=["GET"]),
        Route("/identity/attestation", issue_attestation, methods=["GET"]),
        Route("/health", health, methods=["GET"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=list(cors_origins),
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
            allow_credentials=True,
        )
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        yield
        await services.close()

    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan)

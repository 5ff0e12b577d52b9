"""Provider resource retrieval.

Fetches the identity resource (profile fields) that later gets attested,
using an access token issued by the broker.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx

from zkattest.auth.models.providers import ProviderConfig
from zkattest.shared.errors import (
    ProviderNetworkError,
    UnauthorizedError,
    UpstreamError,
)

logger = logging.getLogger(__name__)


class ResourceFetcher:
    """Reads one provider's identity resource with a bearer token.

    A 401 surfaces as UnauthorizedError (re-authenticate) and is never
    retried. Transient failures (5xx, network) are retried a bounded number
    of times because the GET is idempotent; anything left after that
    surfaces as UpstreamError or ProviderNetworkError (retry later).
    """

    def __init__(
        self,
        provider: ProviderConfig,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
    ):
        self.provider = provider
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def fetch(
        self, access_token: str, fields: Sequence[str] | None = None
    ) -> dict[str, Any]:
        """Fetch the resource, limited to the declared field set.

        Args:
            access_token: Bearer token issued by the provider
            fields: Fields to request. Defaults to the provider's default set.

        Returns:
            The resource object, unwrapped from any provider envelope

        Raises:
            UnauthorizedError: If the token is invalid or expired
            UpstreamError: If the provider keeps failing or returns garbage
            ProviderNetworkError: If the provider can't be reached
        """
        if not access_token:
            raise UnauthorizedError("Missing access token")

        fields = tuple(fields) if fields is not None else self.provider.default_fields
        params: dict[str, str] = {}
        if self.provider.fields_param and fields:
            params[self.provider.fields_param] = ",".join(fields)

        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": self.provider.resource_accept,
        }

        response = await self._get_with_retries(headers, params)
        resource = self._parse_resource(response)

        # Providers without field selection get projected client-side
        if fields and not self.provider.fields_param:
            resource = {key: resource[key] for key in fields if key in resource}

        logger.info(f"Fetched {self.provider.name} resource ({len(resource)} fields)")
        return resource

    async def _get_with_retries(
        self, headers: dict[str, str], params: dict[str, str]
    ) -> httpx.Response:
        attempt = 0
        while True:
            try:
                response = await self._http_client.get(
                    self.provider.resource_endpoint, headers=headers, params=params
                )
            except httpx.HTTPError as e:
                if attempt >= self.max_retries:
                    raise ProviderNetworkError(
                        f"HTTP error fetching {self.provider.name} resource: {e}"
                    ) from e
                logger.warning(f"{self.provider.name} resource fetch failed: {e}")
            else:
                if response.status_code == 401:
                    raise UnauthorizedError(
                        f"{self.provider.name} rejected the access token"
                    )
                if response.status_code < 500 or attempt >= self.max_retries:
                    return response
                logger.warning(
                    f"{self.provider.name} resource fetch returned "
                    f"{response.status_code}, retrying"
                )

            attempt += 1
            await asyncio.sleep(self.retry_backoff * attempt)

    def _parse_resource(self, response: httpx.Response) -> dict[str, Any]:
        if not 200 <= response.status_code < 300:
            raise UpstreamError(
                f"{self.provider.name} resource request failed with "
                f"{response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Invalid {self.provider.name} resource response: {e}",
                status_code=response.status_code,
            ) from e

        if self.provider.resource_envelope and isinstance(body, dict):
            body = body.get(self.provider.resource_envelope)

        if not isinstance(body, dict):
            raise UpstreamError(
                f"{self.provider.name} resource response is not an object",
                status_code=response.status_code,
            )
        return body

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()

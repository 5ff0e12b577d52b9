"""Authorization callback models."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse


@dataclass(frozen=True)
class AuthorizationResponse:
    """Query parameters the provider appends to the redirect URI."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_callback_url(cls, callback_url: str) -> AuthorizationResponse:
        """Parse a redirect URL into an AuthorizationResponse."""
        query_params = parse_qs(urlparse(callback_url).query)

        def get_single_param(key: str) -> str | None:
            values = query_params.get(key, [])
            return values[0] if values else None

        return cls(
            code=get_single_param("code"),
            state=get_single_param("state"),
            error=get_single_param("error"),
            error_description=get_single_param("error_description"),
            error_uri=get_single_param("error_uri"),
        )

"""Token models for provider OAuth exchanges.

Contains the immutable bearer credential handed to callers and the raw
token endpoint response it is built from.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict


@dataclass(frozen=True)
class OAuthToken:
    """Opaque bearer credential issued by a provider.

    Treated as a capability, not an identity. Token values are excluded
    from repr so they never end up in logs.
    """

    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_at: float | None = None  # Unix timestamp
    token_type: str = "Bearer"
    scope: str | None = None

    def is_expired(self, buffer_seconds: float = 30.0) -> bool:
        """Check if the token expired, with an optional safety buffer."""
        if self.expires_at is None:
            return False  # No expiry means token doesn't expire

        return time.time() >= (self.expires_at - buffer_seconds)

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def to_response(self) -> dict[str, Any]:
        """Serialize back into the provider token shape (RFC 6749 Section 5.1)."""
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
        }
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expires_at is not None:
            data["expires_in"] = max(0, int(self.expires_at - time.time()))
        if self.scope:
            data["scope"] = self.scope
        return data


class TokenResponse(BaseModel):
    """Token endpoint response (RFC 6749 Section 5).

    Covers both successful responses (Section 5.1) and error responses
    (Section 5.2). Providers add their own fields; those are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    # Success response fields (RFC 6749 Section 5.1)
    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None  # Seconds until expiry
    refresh_token: str | None = None
    scope: str | None = None

    # Error response fields (RFC 6749 Section 5.2)
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        """Check if token response indicates success."""
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        """Check if token response indicates an error."""
        return self.error is not None

    def to_token(self) -> OAuthToken:
        """Convert a successful response into an OAuthToken.

        Raises:
            ValueError: If response is not successful
        """
        if not self.is_success():
            raise ValueError("Cannot convert error response to OAuthToken")

        expires_at = None
        if self.expires_in is not None:
            expires_at = time.time() + self.expires_in

        return OAuthToken(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=expires_at,
            token_type=self.token_type,
            scope=self.scope,
        )

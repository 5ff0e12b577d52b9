"""Identity provider configuration models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


@dataclass(frozen=True)
class ProviderConfig:
    """Endpoints and client credentials for one OAuth identity provider."""

    name: str
    authorization_endpoint: str
    token_endpoint: str
    resource_endpoint: str
    client_id: str = field(default="")
    client_secret: str = field(default="", repr=False)
    redirect_uri: str = ""
    default_scope: str = ""

    # "basic" sends credentials in an Authorization header, "post" in the body
    token_auth_method: Literal["basic", "post"] = "basic"
    extra_authorization_params: dict[str, str] = field(default_factory=dict)

    # Query parameter that selects resource fields, e.g. Twitter's user.fields
    fields_param: str | None = None
    default_fields: tuple[str, ...] = ()
    # Key wrapping the resource in the provider response, e.g. {"data": {...}}
    resource_envelope: str | None = None
    resource_accept: str = "application/json"

    def is_configured(self) -> bool:
        """Check that client credentials were provided."""
        return bool(self.client_id and self.client_secret)

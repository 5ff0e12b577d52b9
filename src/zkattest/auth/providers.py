"""Built-in identity providers."""

from __future__ import annotations

from zkattest.auth.models.providers import ProviderConfig
from zkattest.shared.errors import ProviderConfigurationError

TWITTER_USER_FIELDS = ("created_at", "public_metrics")


def twitter_provider(
    client_id: str = "",
    client_secret: str = "",
    redirect_uri: str = "http://localhost:5174/callback",
) -> ProviderConfig:
    """Twitter/X OAuth 2.0 with PKCE and confidential-client Basic auth."""
    return ProviderConfig(
        name="twitter",
        authorization_endpoint="https://twitter.com/i/oauth2/authorize",
        token_endpoint="https://api.twitter.com/2/oauth2/token",
        resource_endpoint="https://api.twitter.com/2/users/me",
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        default_scope="tweet.read users.read",
        token_auth_method="basic",
        fields_param="user.fields",
        default_fields=TWITTER_USER_FIELDS,
        resource_envelope="data",
    )


def github_provider(
    client_id: str = "",
    client_secret: str = "",
    redirect_uri: str = "http://localhost:5173/github-callback",
    scope: str = "read:user",
) -> ProviderConfig:
    """GitHub OAuth apps. Credentials go in the form body."""
    return ProviderConfig(
        name="github",
        authorization_endpoint="https://github.com/login/oauth/authorize",
        token_endpoint="https://github.com/login/oauth/access_token",
        resource_endpoint="https://api.github.com/user",
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        default_scope=scope,
        token_auth_method="post",
        extra_authorization_params={"allow_signup": "true"},
        resource_accept="application/vnd.github.v3+json",
    )


class ProviderRegistry:
    """Looks up provider configuration by name."""

    def __init__(self, providers: list[ProviderConfig] | None = None) -> None:
        self._providers: dict[str, ProviderConfig] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: ProviderConfig) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> ProviderConfig:
        """Return the named provider.

        Raises:
            ProviderConfigurationError: If the provider is unknown
        """
        try:
            return self._providers[name]
        except KeyError:
            raise ProviderConfigurationError(f"Unknown provider: {name}") from None

    def names(self) -> list[str]:
        return list(self._providers)

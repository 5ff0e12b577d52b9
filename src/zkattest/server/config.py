"""Server configuration read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from dotenv import find_dotenv, load_dotenv

DEFAULT_CORS_ORIGINS = ("http://localhost:5173",)


@dataclass(frozen=True)
class Settings:
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "info"
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS

    twitter_client_id: str = ""
    twitter_client_secret: str = field(default="", repr=False)
    twitter_redirect_uri: str = "http://localhost:5174/callback"

    github_client_id: str = ""
    github_client_secret: str = field(default="", repr=False)
    github_callback_url: str = "http://localhost:5173/github-callback"
    github_scope: str = "read:user"

    signing_key_file: str | None = None
    signing_key_password: str | None = field(default=None, repr=False)
    http_timeout: float = 30.0

    @classmethod
    def from_env(
        cls, env: Mapping[str, str] | None = None, dotenv: bool = True
    ) -> Settings:
        """Build settings from environment variables.

        Args:
            env: Variables to read. Defaults to os.environ.
            dotenv: Load a .env file into os.environ first

        Raises:
            ValueError: If a numeric setting can't be parsed
        """
        if env is None:
            if dotenv:
                load_dotenv(find_dotenv(usecwd=True))
            env = os.environ

        origins = env.get("ZKATTEST_CORS_ORIGINS")
        cors_origins = (
            tuple(origin.strip() for origin in origins.split(",") if origin.strip())
            if origins
            else DEFAULT_CORS_ORIGINS
        )

        try:
            port = int(env.get("ZKATTEST_PORT", "3000"))
            http_timeout = float(env.get("ZKATTEST_HTTP_TIMEOUT", "30"))
        except ValueError as e:
            raise ValueError(f"Invalid numeric setting: {e}") from e

        return cls(
            host=env.get("ZKATTEST_HOST", "127.0.0.1"),
            port=port,
            log_level=env.get("ZKATTEST_LOG_LEVEL", "info").lower(),
            cors_origins=cors_origins,
            twitter_client_id=env.get("TWITTER_CLIENT_ID", ""),
            twitter_client_secret=env.get("TWITTER_CLIENT_SECRET", ""),
            twitter_redirect_uri=env.get(
                "TWITTER_REDIRECT_URI", "http://localhost:5174/callback"
            ),
            github_client_id=env.get("GITHUB_CLIENT_ID", ""),
            github_client_secret=env.get("GITHUB_CLIENT_SECRET", ""),
            github_callback_url=env.get(
                "GITHUB_CALLBACK_URL", "http://localhost:5173/github-callback"
            ),
            github_scope=env.get("GITHUB_SCOPE", "read:user"),
            signing_key_file=env.get("ZKATTEST_SIGNING_KEY_FILE") or None,
            signing_key_password=env.get("ZKATTEST_SIGNING_KEY_PASSWORD") or None,
            http_timeout=http_timeout,
        )

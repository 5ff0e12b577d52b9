"""PKCE authorization session model.

One session per in-flight OAuth handshake. The verifier never leaves the
holding process; only the challenge and state are sent to the provider.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field


@dataclass(frozen=True)
class AuthorizationSession:
    """PKCE parameters and CSRF state for one authorization attempt (RFC 7636).

    Immutable; consumed exactly once by the session manager.
    """

    verifier: str = field(repr=False)
    challenge: str
    state: str
    created_at: float = field(default_factory=time.time)
    code_challenge_method: str = "S256"
    provider: str | None = None

    def __post_init__(self) -> None:
        """Validate parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.verifier) <= 128):
            raise ValueError("verifier must be 43-128 characters")
        if len(self.challenge) != 43:
            raise ValueError("challenge must be an unpadded base64url SHA256 digest")
        if self.code_challenge_method != "S256":
            raise ValueError("Only S256 code challenge method is supported")
        if not self.state:
            raise ValueError("state must not be empty")

    def is_expired(self, ttl_seconds: float, now: float | None = None) -> bool:
        """Check whether the session outlived ttl_seconds."""
        now = time.time() if now is None else now
        return now - self.created_at > ttl_seconds

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> AuthorizationSession:
        return cls(**json.loads(raw))

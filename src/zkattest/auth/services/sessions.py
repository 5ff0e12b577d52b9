"""PKCE session bookkeeping.

Tracks in-flight authorization handshakes by their state nonce and hands
each verifier out exactly once, so a leaked authorization code can't be
redeemed twice.
"""

from __future__ import annotations

import logging
import time

from zkattest.auth.models.session import AuthorizationSession
from zkattest.auth.primitives.pkce import (
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from zkattest.shared.errors import (
    SessionAlreadyConsumedError,
    SessionExpiredError,
    SessionNotFoundError,
)
from zkattest.shared.storage import InMemoryStorage, StoragePort

logger = logging.getLogger(__name__)

SESSION_PREFIX = "pkce:session:"
CONSUMED_PREFIX = "pkce:consumed:"


class PKCESessionManager:
    """Creates and single-use consumes PKCE authorization sessions.

    Sessions live in a storage port keyed by state. Consuming a session
    deletes it and leaves a tombstone behind, which is how a second
    consume tells "already used" apart from "never existed".
    """

    def __init__(
        self,
        storage: StoragePort | None = None,
        ttl_seconds: float = 600.0,
    ) -> None:
        """Initialize the session manager.

        Args:
            storage: Where sessions are kept. Defaults to process memory.
            ttl_seconds: How long a session may wait for its callback
        """
        self._storage = storage if storage is not None else InMemoryStorage()
        self.ttl_seconds = ttl_seconds

    # ================================
    # Creation
    # ================================

    def begin(self, provider: str | None = None) -> AuthorizationSession:
        """Start a new authorization session.

        Returns:
            AuthorizationSession: Send challenge and state to the provider,
                keep the session's verifier local.
        """
        verifier = generate_code_verifier()
        session = AuthorizationSession(
            verifier=verifier,
            challenge=generate_code_challenge(verifier),
            state=generate_state(),
            provider=provider,
        )

        self._storage.set(SESSION_PREFIX + session.state, session.to_json())

        logger.debug(f"Started PKCE session {session.state[:8]}... for {provider}")
        return session

    # ================================
    # Consumption
    # ================================

    def consume(self, state: str) -> str:
        """Return the verifier for state and delete the session.

        Returns:
            The session's code verifier

        Raises:
            SessionAlreadyConsumedError: If the session was consumed before
            SessionNotFoundError: If no session was started with this state
            SessionExpiredError: If the session outlived its TTL
        """
        return self.consume_session(state).verifier

    def consume_session(self, state: str) -> AuthorizationSession:
        """Like consume, but return the whole session."""
        if self._storage.get(CONSUMED_PREFIX + state) is not None:
            logger.warning(f"Replayed PKCE state {state[:8]}...")
            raise SessionAlreadyConsumedError("Authorization session already consumed")

        raw = self._storage.get(SESSION_PREFIX + state)
        if raw is None:
            raise SessionNotFoundError("No authorization session for this state")

        # Delete before returning so no second caller can observe the session
        self._storage.remove(SESSION_PREFIX + state)
        self._storage.set(CONSUMED_PREFIX + state, str(time.time()))

        session = AuthorizationSession.from_json(raw)
        if session.is_expired(self.ttl_seconds):
            raise SessionExpiredError("Authorization session expired")

        logger.debug(f"Consumed PKCE session {state[:8]}...")
        return session

    # ================================
    # Housekeeping
    # ================================

    def exists(self, state: str) -> bool:
        """Check whether an unconsumed session exists for state."""
        return self._storage.get(SESSION_PREFIX + state) is not None

    def discard(self, state: str) -> bool:
        """Drop a session without consuming it (e.g. user cancelled)."""
        removed = self._storage.remove(SESSION_PREFIX + state)
        if removed:
            self._storage.set(CONSUMED_PREFIX + state, str(time.time()))
        return removed

    def prune(self, now: float | None = None) -> int:
        """Remove expired sessions and tombstones older than the TTL.

        Returns:
            Number of storage entries removed
        """
        now = time.time() if now is None else now
        removed = 0

        for key in self._storage.keys(SESSION_PREFIX):
            raw = self._storage.get(key)
            if raw is None:
                continue
            if AuthorizationSession.from_json(raw).is_expired(self.ttl_seconds, now):
                self._storage.remove(key)
                removed += 1

        # A tombstone only matters while its session could still be valid
        for key in self._storage.keys(CONSUMED_PREFIX):
            raw = self._storage.get(key)
            if raw is not None and now - float(raw) > self.ttl_seconds:
                self._storage.remove(key)
                removed += 1

        if removed:
            logger.debug(f"Pruned {removed} stale PKCE entries")
        return removed

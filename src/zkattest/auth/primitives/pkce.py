"""PKCE (Proof Key for Code Exchange) primitives.

Implements RFC 7636 parameter generation to prevent authorization code
interception attacks.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

# RFC 7636 Section 7.1: at least 256 bits of entropy in the verifier
VERIFIER_ENTROPY_BYTES = 32
STATE_ENTROPY_BYTES = 16


def generate_code_verifier(num_bytes: int = VERIFIER_ENTROPY_BYTES) -> str:
    """Generate a cryptographically secure code verifier.

    RFC 7636 Section 4.1: the verifier must be 43-128 characters from the
    unreserved set. base64url of 32 random bytes yields exactly 43.

    Returns:
        Unpadded base64url string carrying num_bytes of entropy
    """
    if num_bytes < VERIFIER_ENTROPY_BYTES:
        raise ValueError(
            f"code verifier needs at least {VERIFIER_ENTROPY_BYTES} bytes of entropy"
        )
    return secrets.token_urlsafe(num_bytes)[:128]


def generate_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge from a code verifier.

    RFC 7636 Section 4.2: BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()

    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state(num_bytes: int = STATE_ENTROPY_BYTES) -> str:
    """Generate an unguessable state parameter for CSRF protection."""
    if num_bytes < STATE_ENTROPY_BYTES:
        raise ValueError(f"state needs at least {STATE_ENTROPY_BYTES} bytes of entropy")
    return secrets.token_urlsafe(num_bytes)


def states_match(expected: str, actual: str) -> bool:
    """Compare state values in constant time."""
    return secrets.compare_digest(expected.encode(), actual.encode())

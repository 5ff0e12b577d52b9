import base64
import hashlib

import pytest

from zkattest.auth.models.session import AuthorizationSession
from zkattest.auth.primitives.pkce import (
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
    states_match,
)


class TestPKCEPrimitives:
    def test_verifier_and_challenge_meet_rfc_requirements(self) -> None:
        # Arrange
        verifier = generate_code_verifier()

        # Act
        challenge = generate_code_challenge(verifier)

        # Assert RFC 7636 requirements
        assert 43 <= len(verifier) <= 128
        assert len(challenge) == 43
        assert "=" not in challenge

        expected_challenge = (
            base64.urlsafe_b64encode(hashlib.sha256(verifier.encode("ascii")).digest())
            .decode("ascii")
            .rstrip("=")
        )
        assert challenge == expected_challenge

    def test_rfc_7636_appendix_b_vector(self) -> None:
        # Arrange
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

        # Act
        challenge = generate_code_challenge(verifier)

        # Assert
        assert challenge == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_generated_values_are_unique(self) -> None:
        # Act
        verifiers = {generate_code_verifier() for _ in range(20)}
        states = {generate_state() for _ in range(20)}

        # Assert
        assert len(verifiers) == 20
        assert len(states) == 20

    def test_rejects_low_entropy_verifier(self) -> None:
        with pytest.raises(ValueError):
            generate_code_verifier(num_bytes=16)

    def test_states_match_is_exact(self) -> None:
        # Arrange
        state = generate_state()

        # Assert
        assert states_match(state, state)
        assert not states_match(state, state + "x")
        assert not states_match(state, "")


class TestAuthorizationSession:
    def test_rejects_short_verifier(self) -> None:
        with pytest.raises(ValueError, match="43-128"):
            AuthorizationSession(verifier="short", challenge="a" * 43, state="s")

    def test_rejects_plain_challenge_method(self) -> None:
        with pytest.raises(ValueError, match="S256"):
            AuthorizationSession(
                verifier="v" * 43,
                challenge="c" * 43,
                state="s",
                code_challenge_method="plain",
            )

    def test_verifier_is_hidden_from_repr(self) -> None:
        # Arrange
        verifier = generate_code_verifier()
        session = AuthorizationSession(
            verifier=verifier,
            challenge=generate_code_challenge(verifier),
            state=generate_state(),
        )

        # Assert
        assert verifier not in repr(session)

    def test_json_round_trip_preserves_fields(self) -> None:
        # Arrange
        verifier = generate_code_verifier()
        session = AuthorizationSession(
            verifier=verifier,
            challenge=generate_code_challenge(verifier),
            state=generate_state(),
            provider="github",
        )

        # Act
        restored = AuthorizationSession.from_json(session.to_json())

        # Assert
        assert restored == session

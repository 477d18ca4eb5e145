"""
Test suite for bearer token decoding and principal extraction.
"""

from datetime import timedelta

import pytest
from jose import jwt

from ordering.core.security import (
    Principal,
    TokenError,
    decode_token,
    principal_from_claims,
)


# ============================================================================
# Token Decoding
# ============================================================================


class TestDecodeToken:
    """Test JWT validation."""

    def test_round_trip_claims(self, make_token):
        token = make_token({"sub": "user-1", "customer_id": 3})

        claims = decode_token(token)

        assert claims["sub"] == "user-1"
        assert claims["customer_id"] == 3
        assert "exp" in claims and "iat" in claims

    def test_expired_token(self, make_token):
        token = make_token({"sub": "user-1"}, expires_in=timedelta(seconds=-1))

        with pytest.raises(TokenError) as exc_info:
            decode_token(token)

        assert exc_info.value.code == "TOKEN_EXPIRED"

    def test_wrong_signature(self, settings):
        token = jwt.encode(
            {"sub": "user-1"},
            "another-secret-key-with-at-least-32-chars",
            algorithm=settings.jwt_algorithm,
        )

        with pytest.raises(TokenError) as exc_info:
            decode_token(token)

        assert exc_info.value.code == "TOKEN_INVALID"

    def test_garbage_token(self):
        with pytest.raises(TokenError) as exc_info:
            decode_token("not.a.token")

        assert exc_info.value.code == "TOKEN_INVALID"

    def test_empty_token(self):
        with pytest.raises(TokenError) as exc_info:
            decode_token("")

        assert exc_info.value.code == "EMPTY_TOKEN"


# ============================================================================
# Principal Extraction
# ============================================================================


class TestPrincipalFromClaims:
    """Test claim normalization across issuers."""

    @pytest.mark.parametrize(
        "claims",
        [
            {"sub": "u1", "role": "admin"},
            {"userId": "u1", "isAdmin": True},
            {"id": "u1", "is_admin": True},
        ],
    )
    def test_admin_claim_variants(self, claims):
        principal = principal_from_claims(claims)

        assert principal.subject == "u1"
        assert principal.is_admin is True

    def test_customer_principal(self):
        principal = principal_from_claims(
            {"sub": 42, "email": "dana@example.com", "customer_id": "7"}
        )

        assert principal == Principal(
            subject="42",
            email="dana@example.com",
            is_admin=False,
            customer_id=7,
        )

    def test_malformed_customer_id_is_dropped(self):
        assert principal_from_claims({"sub": "u1", "customer_id": "abc"}).customer_id is None

    def test_missing_subject(self):
        with pytest.raises(TokenError):
            principal_from_claims({"role": "admin"})

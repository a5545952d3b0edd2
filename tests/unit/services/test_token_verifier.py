"""
Unit tests for bearer token verification.
"""

import time

import jwt
import pytest

from acms.services.auth.token_verifier import AuthenticationError, TokenVerifier
from tests.fakes import TEST_JWT_SECRET, make_token


@pytest.fixture
def verifier():
    return TokenVerifier(TEST_JWT_SECRET)


@pytest.mark.security
class TestTokenVerifier:
    def test_valid_token_returns_identity(self, verifier):
        assert verifier.verify(make_token("stu-1")) == "stu-1"

    def test_numeric_identity_is_stringified(self, verifier):
        token = jwt.encode(
            {"userId": 42, "exp": int(time.time()) + 60}, TEST_JWT_SECRET, algorithm="HS256"
        )

        assert verifier.verify(token) == "42"

    @pytest.mark.parametrize("token", [None, ""])
    def test_missing_token(self, verifier, token):
        with pytest.raises(AuthenticationError) as exc_info:
            verifier.verify(token)

        assert exc_info.value.message == "No authentication token, access denied"

    def test_expired_token(self, verifier):
        with pytest.raises(AuthenticationError) as exc_info:
            verifier.verify(make_token("stu-1", expires_in=-10))

        assert exc_info.value.message == "Token expired"

    def test_wrong_secret(self, verifier):
        token = make_token("stu-1", secret="another-secret-that-is-long-enough-0000")

        with pytest.raises(AuthenticationError) as exc_info:
            verifier.verify(token)

        assert exc_info.value.message == "Invalid token"

    def test_garbage_token(self, verifier):
        with pytest.raises(AuthenticationError):
            verifier.verify("not.a.token")

    def test_missing_identity_claim(self, verifier):
        token = jwt.encode(
            {"sub": "stu-1", "exp": int(time.time()) + 60}, TEST_JWT_SECRET, algorithm="HS256"
        )

        with pytest.raises(AuthenticationError) as exc_info:
            verifier.verify(token)

        assert exc_info.value.message == "Invalid token"

    def test_unexpected_algorithm_rejected(self):
        verifier = TokenVerifier(TEST_JWT_SECRET, algorithm="HS512")

        with pytest.raises(AuthenticationError):
            verifier.verify(make_token("stu-1"))

    def test_custom_identity_claim(self):
        verifier = TokenVerifier(TEST_JWT_SECRET, identity_claim="sub")
        token = jwt.encode(
            {"sub": "cou-1", "exp": int(time.time()) + 60}, TEST_JWT_SECRET, algorithm="HS256"
        )

        assert verifier.verify(token) == "cou-1"

    def test_from_settings(self, test_settings):
        verifier = TokenVerifier.from_settings(test_settings)

        assert verifier.secret == TEST_JWT_SECRET
        assert verifier.algorithm == "HS256"
        assert verifier.identity_claim == "userId"

"""
Unit tests for access token verification.
"""

from datetime import UTC, datetime, timedelta

from jose import jwt

from core.security.tokens import TokenService

SECRET = "test-secret-key-for-tokens"


class TestTokenService:
    def test_round_trip(self):
        service = TokenService(secret_key=SECRET)

        token = service.create_access_token("user-123", email="a@example.com")
        payload = service.verify_access_token(token)

        assert payload is not None
        assert payload.sub == "user-123"
        assert payload.email == "a@example.com"
        assert payload.type == "access"

    def test_wrong_secret_rejected(self):
        token = TokenService(secret_key=SECRET).create_access_token("user-123")

        assert TokenService(secret_key="other-secret").verify_access_token(token) is None

    def test_expired_token_rejected(self):
        claims = {
            "sub": "user-123",
            "type": "access",
            "exp": datetime.now(UTC) - timedelta(minutes=1),
        }
        token = jwt.encode(claims, SECRET, algorithm="HS256")

        assert TokenService(secret_key=SECRET).verify_access_token(token) is None

    def test_non_access_token_rejected(self):
        claims = {
            "sub": "user-123",
            "type": "refresh",
            "exp": datetime.now(UTC) + timedelta(minutes=5),
        }
        token = jwt.encode(claims, SECRET, algorithm="HS256")

        assert TokenService(secret_key=SECRET).verify_access_token(token) is None

    def test_garbage_rejected(self):
        assert TokenService(secret_key=SECRET).verify_access_token("not-a-jwt") is None

"""
Bearer token verification for API callers.

Tokens are issued by the account service; this service only needs to
read the caller's user id from them. ``create_access_token`` exists for
tooling and tests.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt


@dataclass
class TokenPayload:
    """Claims this service reads from an access token."""

    sub: str  # User ID
    exp: datetime
    type: str
    email: str | None = None


class TokenService:
    """Creates and validates HS256 access tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 60,
    ):
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._access_token_expire_minutes = access_token_expire_minutes

    def create_access_token(self, user_id: str, email: str | None = None) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": user_id,
            "exp": now + timedelta(minutes=self._access_token_expire_minutes),
            "iat": now,
            "type": "access",
        }
        if email:
            payload["email"] = email
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify_access_token(self, token: str) -> TokenPayload | None:
        """
        Decode an access token.

        Args:
            token: Encoded JWT from the Authorization header

        Returns:
            TokenPayload for a valid, unexpired access token; None otherwise
        """
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError:
            return None

        if not claims.get("sub") or "exp" not in claims or claims.get("type") != "access":
            return None

        return TokenPayload(
            sub=str(claims["sub"]),
            exp=datetime.fromtimestamp(claims["exp"], tz=UTC),
            type=claims["type"],
            email=claims.get("email"),
        )

"""
JWT token service for authentication.

Access and refresh tokens carry the user id in ``sub``; single-purpose
tokens (email verification, password reset) carry a ``type`` claim that
must match on decode.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

ACCESS = "access"
REFRESH = "refresh"
EMAIL_VERIFICATION = "email_verification"
PASSWORD_RESET = "password_reset"


@dataclass
class TokenPayload:
    """Decoded JWT claims."""

    sub: str
    exp: datetime
    iat: datetime
    type: str
    email: str | None = None
    role: str | None = None


class TokenService:
    """Creates and validates signed JWTs."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 30,
        refresh_token_expire_days: int = 7,
    ):
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._access_ttl = timedelta(minutes=access_token_expire_minutes)
        self._refresh_ttl = timedelta(days=refresh_token_expire_days)

    def _encode(self, user_id: str, token_type: str, ttl: timedelta, **claims) -> str:
        now = datetime.now(UTC)
        payload = {"sub": user_id, "iat": now, "exp": now + ttl, "type": token_type}
        payload.update({k: v for k, v in claims.items() if v is not None})
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def create_access_token(
        self,
        user_id: str,
        email: str | None = None,
        role: str | None = None,
    ) -> str:
        return self._encode(user_id, ACCESS, self._access_ttl, email=email, role=role)

    def create_refresh_token(self, user_id: str) -> str:
        return self._encode(user_id, REFRESH, self._refresh_ttl)

    def create_token_pair(
        self,
        user_id: str,
        email: str | None = None,
        role: str | None = None,
    ) -> tuple[str, str]:
        """Return ``(access_token, refresh_token)`` for a user."""
        return (
            self.create_access_token(user_id, email, role),
            self.create_refresh_token(user_id),
        )

    def decode_token(self, token: str) -> TokenPayload | None:
        """
        Decode and validate a JWT token.

        Args:
            token: Encoded JWT

        Returns:
            TokenPayload if the signature, expiry and required claims are
            valid, None otherwise
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError:
            return None

        if any(field not in payload for field in ("sub", "exp", "type")):
            return None

        return TokenPayload(
            sub=payload["sub"],
            exp=datetime.fromtimestamp(payload["exp"], tz=UTC),
            iat=datetime.fromtimestamp(payload.get("iat", 0), tz=UTC),
            type=payload["type"],
            email=payload.get("email"),
            role=payload.get("role"),
        )

    def _verify(self, token: str, token_type: str) -> TokenPayload | None:
        payload = self.decode_token(token)
        if payload and payload.type == token_type:
            return payload
        return None

    def verify_access_token(self, token: str) -> TokenPayload | None:
        return self._verify(token, ACCESS)

    def verify_refresh_token(self, token: str) -> TokenPayload | None:
        return self._verify(token, REFRESH)

    def create_email_verification_token(self, user_id: str, email: str) -> str:
        """Token valid for 24 hours that binds a user id to an email address."""
        return self._encode(user_id, EMAIL_VERIFICATION, timedelta(hours=24), email=email)

    def create_password_reset_token(self, user_id: str) -> str:
        """Token valid for one hour."""
        return self._encode(user_id, PASSWORD_RESET, timedelta(hours=1))

    def verify_email_verification_token(self, token: str) -> tuple[str, str] | None:
        """Return ``(user_id, email)`` for a valid verification token."""
        payload = self._verify(token, EMAIL_VERIFICATION)
        if payload is None or not payload.email:
            return None
        return payload.sub, payload.email

    def verify_password_reset_token(self, token: str) -> str | None:
        payload = self._verify(token, PASSWORD_RESET)
        return payload.sub if payload else None

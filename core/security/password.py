"""
Password hashing utilities using bcrypt.
"""

from passlib.context import CryptContext


class PasswordHasher:
    """Bcrypt password hashing with a precomputed dummy hash.

    The dummy hash lets login spend the same bcrypt time for unknown
    emails as for real accounts.
    """

    def __init__(self, rounds: int = 12):
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )
        self._dummy_hash: str | None = None

    def hash(self, password: str) -> str:
        """Hash a plain text password."""
        return self._context.hash(password)

    def verify(self, plain_password: str, hashed_password: str) -> bool:
        """Return True if the password matches the stored hash."""
        return self._context.verify(plain_password, hashed_password)

    def burn(self, plain_password: str) -> None:
        """Run a verification against a throwaway hash and discard the result."""
        if self._dummy_hash is None:
            self._dummy_hash = self._context.hash("inkwell-dummy-password")
        self._context.verify(plain_password, self._dummy_hash)


# Singleton instance
password_hasher = PasswordHasher()

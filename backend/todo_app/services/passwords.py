"""Password hashing and verification."""
import bcrypt

from todo_app.services.errors import InvalidRequest

# bcrypt ignores (or rejects) input beyond 72 bytes.
BCRYPT_MAX_BYTES = 72


def check_password_policy(password: str, min_length: int = 8, max_length: int = 64) -> None:
    """Raise InvalidRequest unless the password fits the configured policy."""
    if len(password) < min_length or len(password) > max_length:
        raise InvalidRequest(f"Password must be {min_length}-{max_length} characters")
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise InvalidRequest("Password is too long")


class PasswordHasher:
    """bcrypt-backed credential verifier.

    ``verify`` never raises for malformed hashes and never logs the plaintext.
    """

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, password: str) -> str:
        """Hash a password."""
        return bcrypt.hashpw(
            password.encode("utf-8"),
            bcrypt.gensalt(rounds=self.rounds),
        ).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """Verify a password against its hash."""
        if not password or not password_hash:
            return False
        try:
            return bcrypt.checkpw(
                password.encode("utf-8"),
                password_hash.encode("utf-8"),
            )
        except ValueError:
            return False

    def burn(self, password: str) -> bool:
        """Spend the same hashing work as a real check when no user matched."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("not-a-real-password")
        self.verify(password or "x", self._dummy_hash)
        return False

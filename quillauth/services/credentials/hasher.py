"""
Secret hashing for the credential service

Implements:
- Adaptive password hashing (bcrypt, fixed cost)
- Constant-time password verification
- SHA-256 fingerprints for token lookups
- URL-safe random token generation
"""

import hashlib
import secrets

import bcrypt


class SecretHasher:
    """
    One-way hashing of passwords and token secrets.

    Passwords are hashed with bcrypt so that each hash carries its own salt
    and cost. Token values are fingerprinted with plain SHA-256: they already
    carry 256 bits of entropy and the lookup must be deterministic.
    """

    BCRYPT_ROUNDS = 12
    DEFAULT_TOKEN_LENGTH = 32  # 256 bits

    def __init__(self):
        # Compared against when the user does not exist so that a login for
        # an unknown email costs the same as a wrong password.
        self._dummy_hash = self.hash_password(secrets.token_urlsafe(16))

    def hash_password(self, plaintext: str) -> str:
        """
        Hash a password with bcrypt.

        Args:
            plaintext: Password to hash

        Returns:
            bcrypt hash string ($2b$...)
        """
        salt = bcrypt.gensalt(rounds=self.BCRYPT_ROUNDS)
        return bcrypt.hashpw(plaintext.encode("utf-8"), salt).decode("utf-8")

    def verify_password(self, password_hash: str, plaintext: str) -> bool:
        """
        Check a password against a stored bcrypt hash.

        Returns False on mismatch and on malformed hashes; never raises.
        """
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), password_hash.encode("utf-8"))
        except (ValueError, TypeError, AttributeError):
            return False

    def burn_verification(self, plaintext: str) -> None:
        """Run a verification against a throwaway hash and discard the result."""
        self.verify_password(self._dummy_hash, plaintext)

    @staticmethod
    def fingerprint(raw: str) -> str:
        """
        Deterministic SHA-256 digest of a raw token value.

        Args:
            raw: Raw token string

        Returns:
            64 character lowercase hex digest
        """
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def random_token(self, length: int = DEFAULT_TOKEN_LENGTH) -> str:
        """
        Generate a URL-safe random token.

        Args:
            length: Number of random bytes (non-positive values use the default)

        Returns:
            URL-safe base64 string without padding
        """
        if length <= 0:
            length = self.DEFAULT_TOKEN_LENGTH
        return secrets.token_urlsafe(length)

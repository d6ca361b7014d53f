"""
FinGuard Password Hashing
"""

from typing import Optional

import bcrypt

from finguard.core.config import Settings, settings as default_settings


# bcrypt reads at most 72 bytes of input
BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode('utf-8')[:BCRYPT_MAX_BYTES]


class PasswordHasher:
    """bcrypt password hashing"""

    def __init__(self, rounds: Optional[int] = None, config: Optional[Settings] = None):
        config = config or default_settings
        self.rounds = rounds or config.BCRYPT_ROUNDS

    def hash(self, password: str) -> str:
        """Hash password using bcrypt"""
        return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=self.rounds)).decode('utf-8')

    def verify(self, password: str, hashed_password: str) -> bool:
        """Verify password using bcrypt; malformed hashes never match"""
        if not password or not hashed_password:
            return False
        try:
            return bcrypt.checkpw(_encode(password), hashed_password.encode('utf-8'))
        except ValueError:
            return False

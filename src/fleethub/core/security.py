"""Agent token generation and verification using Argon2id."""

import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_hasher = PasswordHasher()

TOKEN_BYTES = 32


def generate_agent_token() -> str:
    """Create a new random agent token (shown to the operator once)."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str) -> str:
    return _hasher.hash(token)


def verify_token(token: str, token_hash: str) -> bool:
    """Verify an agent token against its stored hash."""
    try:
        return _hasher.verify(token_hash, token)
    except (VerificationError, InvalidHashError):
        return False

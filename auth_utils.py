"""
Authentication utilities: Password hashing and JWT token management
"""

import jwt
from datetime import datetime, timedelta, timezone
from passlib.context import CryptContext
from typing import Optional
from config import settings

# Password hashing context
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto"
)

# JWT configuration
ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    """Hash a password using argon2"""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """
    Verify a password against its hash.

    Returns False for a missing or unrecognised hash instead of raising.
    """
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        return False


def dummy_verify_password() -> None:
    """Spend the same argon2 work as a real check when there is no hash to check."""
    pwd_context.dummy_verify()


def _require_secret() -> str:
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot sign or verify session tokens.")
    return settings.jwt_secret_key


def create_jwt(user_id: str, plan: str, expires_in: Optional[int] = None) -> str:
    """Create a session token carrying the user id and plan"""
    secret = _require_secret()
    now = datetime.now(timezone.utc)
    lifetime = settings.jwt_expire_seconds if expires_in is None else expires_in

    payload = {
        "sub": str(user_id),
        "plan": plan,
        "iat": now,
        "exp": now + timedelta(seconds=lifetime),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_jwt(token: str) -> Optional[dict]:
    """Decode a JWT token. Returns None if invalid or expired."""
    secret = _require_secret()

    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def create_expired_jwt(user_id: str, plan: str = "FREE", expired_seconds_ago: int = 1) -> str:
    """
    Create an expired JWT token for testing purposes.

    Args:
        user_id: User ID to include in token
        plan: Plan claim to include in token
        expired_seconds_ago: How many seconds ago the token should have expired (default: 1)

    Returns:
        Expired JWT token string

    Raises:
        ValueError: If JWT_SECRET_KEY is not set
    """
    secret = _require_secret()
    now = datetime.now(timezone.utc)

    payload = {
        "sub": str(user_id),
        "plan": plan,
        "iat": now - timedelta(seconds=expired_seconds_ago + 60),
        "exp": now - timedelta(seconds=expired_seconds_ago),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)

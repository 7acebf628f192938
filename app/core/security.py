"""
Security utilities for password hashing and JWT tokens.
Uses bcrypt for secure password hashing.
Uses python-jose for JWT token validation.

Token issuance belongs to the account service; ``create_access_token`` only
exists so development seeding and tests can mint tokens with the same claims.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import bcrypt
from jose import jwt, JWTError
from core.config import settings


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password to hash

    Returns:
        Hashed password as a string
    """
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its bcrypt hash."""
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def create_access_token(
    user_id: int,
    email: Optional[str] = None,
    expires_minutes: Optional[int] = None,
    secret_key: Optional[str] = None
) -> str:
    """
    Create a signed JWT whose subject is the user id.

    Args:
        user_id: User ID stored in the ``sub`` claim (as a string)
        email: Optional email claim
        expires_minutes: Lifetime override, defaults to settings
        secret_key: Signing key override, defaults to settings

    Returns:
        Encoded JWT
    """
    now = datetime.now(timezone.utc)
    lifetime = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    payload = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=lifetime)).timestamp()),
    }
    if email:
        payload["email"] = email

    return jwt.encode(payload, secret_key or settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token string

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    if not token:
        return None
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def token_subject(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    """Return the token subject as a string, or None when absent."""
    if not payload:
        return None
    subject = payload.get("sub")
    if subject is None:
        return None
    return str(subject)

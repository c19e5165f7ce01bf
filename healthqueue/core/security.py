"""Security utilities for JWT handling.

Tokens are minted by the auth service; this API verifies them and turns the
claims into a :class:`~healthqueue.schemas.auth.Principal`.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from healthqueue.config import settings
from healthqueue.core.exceptions import UnauthorizedException
from healthqueue.schemas.auth import Principal, UserRole


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode (``sub`` and ``role`` at minimum)
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update(
        {
            "exp": expire,
            "iat": datetime.now(UTC),
            "type": "access",
        }
    )

    encoded_jwt = jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )

    return encoded_jwt


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token to decode

    Returns:
        Decoded payload or None if invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )

        # Verify token type
        if payload.get("type") != "access":
            return None

        return payload
    except JWTError:
        return None


def authenticate_token(token: str | None) -> Principal:
    """
    Resolve a bearer token to the calling principal.

    Args:
        token: Raw JWT (without the ``Bearer`` prefix)

    Returns:
        Principal built from the ``sub``, ``role`` and ``roles`` claims

    Raises:
        UnauthorizedException: If the token is missing, invalid or expired,
            or carries no usable identity/role
    """
    if not token:
        raise UnauthorizedException("Missing credentials")

    payload = decode_access_token(token)
    if payload is None:
        raise UnauthorizedException("Could not validate credentials")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise UnauthorizedException("Could not validate credentials")

    try:
        role = UserRole(payload.get("role"))
        extra_roles = frozenset(UserRole(r) for r in payload.get("roles") or [])
    except ValueError:
        raise UnauthorizedException("Unknown role in token")

    return Principal(identity=subject, role=role, extra_roles=extra_roles)

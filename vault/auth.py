"""Password hashing and request identity helpers."""

from typing import Optional

import bcrypt
from fastapi import Header

from common.logging_config import get_logger
from vault.exceptions import AuthenticationRequiredError, InvalidAPIKeyError
from vault.repositories.user_repository import UserRepository

logger = get_logger(__name__)


def hash_password(password: str) -> str:
    """
    Hash a link password using bcrypt.

    Args:
        password: Plain text password to hash

    Returns:
        Bcrypt hash of the password
    """
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    Args:
        password: Plain text password to verify
        password_hash: Bcrypt hash to verify against

    Returns:
        True if password matches hash, False otherwise
    """
    password_bytes = password.encode('utf-8')
    hash_bytes = password_hash.encode('utf-8')
    return bcrypt.checkpw(password_bytes, hash_bytes)


async def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """
    FastAPI dependency resolving the caller's identity, if any.

    Args:
        authorization: Authorization header value (format: "Bearer <api_key>")

    Returns:
        user_id of the authenticated user, or None for anonymous callers

    Raises:
        InvalidAPIKeyError: If a key is presented but unknown or malformed
    """
    if not authorization:
        return None

    if not authorization.startswith("Bearer "):
        raise InvalidAPIKeyError("Invalid authorization header format")

    api_key = authorization[len("Bearer "):].strip()
    user = UserRepository.get_by_api_key(api_key)
    if user is None:
        logger.warning("API key validation failed: invalid key")
        raise InvalidAPIKeyError("Session expired or API key invalid")

    return user.user_id


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency requiring an authenticated identity.

    Raises:
        AuthenticationRequiredError: If no credentials were supplied
        InvalidAPIKeyError: If the API key is unknown
    """
    user_id = await get_optional_user(authorization)
    if user_id is None:
        raise AuthenticationRequiredError("Authentication required")
    return user_id

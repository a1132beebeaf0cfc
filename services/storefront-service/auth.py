"""Authentication and authorization dependencies."""
from typing import Optional
from fastapi import Depends, Header
from sqlalchemy.orm import Session
import jwt
import logging

from database import get_db
from errors import UnauthorizedError, ForbiddenError
from models import User, Role
from monitoring import auth_failures_counter, auth_attempts_counter
from security import decode_access_token

logger = logging.getLogger(__name__)


def _bearer_token(authorization: Optional[str]) -> str:
    """Pull the token out of a ``Bearer <token>`` header."""
    if authorization is None:
        auth_failures_counter.add(1, {"reason": "missing_header"})
        logger.warning("Authentication failed: Missing authorization header")
        raise UnauthorizedError("Missing authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        auth_failures_counter.add(1, {"reason": "invalid_format"})
        logger.warning("Authentication failed: Invalid authorization header format", extra={
            "auth_header": authorization[:20] + "..." if len(authorization) > 20 else authorization
        })
        raise UnauthorizedError("Invalid authorization header format")

    return parts[1]


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the authenticated user.

    Args:
        authorization: Authorization header value
        db: Database session

    Returns:
        The user the token was issued to

    Raises:
        UnauthorizedError: If the token is missing, invalid, expired or
            refers to a user that no longer exists
    """
    auth_attempts_counter.add(1, {"type": "bearer_token"})
    token = _bearer_token(authorization)

    try:
        payload = decode_access_token(token)
        user_id = int(payload["sub"])
    except jwt.ExpiredSignatureError:
        auth_failures_counter.add(1, {"reason": "expired_token"})
        logger.warning("Authentication failed: Expired token")
        raise UnauthorizedError("Token expired")
    except (jwt.InvalidTokenError, KeyError, ValueError):
        auth_failures_counter.add(1, {"reason": "invalid_token"})
        logger.warning("Authentication failed: Invalid token", extra={
            "token_prefix": token[:8] + "..." if len(token) > 8 else token
        })
        raise UnauthorizedError("Invalid token")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        auth_failures_counter.add(1, {"reason": "unknown_user"})
        logger.warning("Authentication failed: Unknown user", extra={"user_id": user_id})
        raise UnauthorizedError("Invalid token")

    logger.debug("Authentication successful", extra={"user_id": user.id})
    return user


def require_role(role: Role):
    """
    Build a dependency that admits only users holding ``role``.

    A missing credential, a bad credential and a valid credential with the
    wrong role all produce the same 401 response.
    """

    def dependency(
        authorization: Optional[str] = Header(None),
        db: Session = Depends(get_db)
    ) -> User:
        try:
            user = get_current_user(authorization, db)
        except UnauthorizedError:
            raise UnauthorizedError("Unauthorized")

        if user.role != role:
            auth_failures_counter.add(1, {"reason": "insufficient_role"})
            logger.warning("Authorization failed: Insufficient role", extra={
                "user_id": user.id,
                "required_role": role.value
            })
            raise UnauthorizedError("Unauthorized")
        return user

    return dependency


require_admin = require_role(Role.ADMIN)


def ensure_owner_or_admin(user: User, owner_id: int) -> None:
    """Raise ForbiddenError unless ``user`` owns the resource or is an admin."""
    if user.id != owner_id and user.role != Role.ADMIN:
        logger.warning("Authorization failed: Not the resource owner", extra={
            "user_id": user.id,
            "owner_id": owner_id
        })
        raise ForbiddenError("Forbidden")

"""Account registration and login."""
import logging
from typing import Any, Dict
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import ConflictError, UnauthorizedError
from models import User, Role
from monitoring import auth_attempts_counter, auth_failures_counter
from schemas import RegisterRequest
from security import hash_password, verify_password, create_access_token

logger = logging.getLogger(__name__)


class UserService:
    """Service for customer accounts."""

    def register(self, db: Session, request: RegisterRequest) -> User:
        """
        Create a CUSTOMER account.

        Raises:
            ConflictError: If the email is already registered
        """
        email = request.email.lower()
        if db.query(User.id).filter(User.email == email).first() is not None:
            raise ConflictError("Email already registered", code="duplicate_email")

        user = User(
            name=request.name.strip(),
            email=email,
            phone=request.phone,
            password_hash=hash_password(request.password),
            role=Role.CUSTOMER
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("Email already registered", code="duplicate_email")

        logger.info("Account created", extra={"user_id": user.id})
        return user

    def login(self, db: Session, email: str, password: str) -> Dict[str, Any]:
        """
        Check credentials and issue an access token.

        Raises:
            UnauthorizedError: If the email is unknown or the password is wrong
        """
        auth_attempts_counter.add(1, {"type": "login"})

        user = db.query(User).filter(User.email == email.lower()).first()
        if user is None or not verify_password(password, user.password_hash):
            auth_failures_counter.add(1, {"reason": "invalid_credentials"})
            logger.warning("Login failed: Invalid credentials")
            raise UnauthorizedError("Invalid email or password")

        logger.info("User logged in successfully", extra={"user_id": user.id})
        return {
            "token": create_access_token(user.id, user.role.value),
            "user_id": user.id,
            "role": user.role
        }

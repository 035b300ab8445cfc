"""
Authentication for Game Deals
Argon2id password hashing and HS256 API tokens

The authorization pipeline only consumes the result of Authenticator.authenticate:
a User, or None when the caller cannot be identified. Every failure mode
(missing header, bad signature, expired token, unknown user) yields None.
"""

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Request
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import Settings
from .database import User

logger = logging.getLogger(__name__)

AUTH_TOKEN_AUDIENCE = "game-deals"
AUTH_TOKEN_ALGORITHM = "HS256"
AUTH_HEADER_PREFIX = "Bearer "

MIN_PASSWORD_LENGTH = 8
COMMON_PASSWORDS = {
    "password",
    "12345678",
    "123456789",
    "password1",
    "password123",
    "qwertyuiop",
    "iloveyou",
    "sunshine",
    "princess",
    "football",
    "baseball",
    "welcome1",
    "letmein1",
    "trustno1",
    "admin123",
    "administrator",
}

# Argon2id password hashing
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__memory_cost=65536,  # 64MB
    argon2__time_cost=3,
    argon2__parallelism=1,
    argon2__hash_len=32,
    argon2__salt_len=16,
)


class JWTManager:
    """API token management, HS256 signed with the configured secret"""

    def __init__(self, secret: str, expire_days: int = 14):
        self.secret = secret
        self.expire_delta = timedelta(days=expire_days)

    def create_auth_token(self, user_id: int) -> str:
        """Create an API token whose subject is the user's id"""
        now = datetime.now(timezone.utc)
        payload = {
            "aud": AUTH_TOKEN_AUDIENCE,
            "iss": AUTH_TOKEN_AUDIENCE,
            "sub": str(user_id),
            "iat": now,
            "exp": now + self.expire_delta,
            "jti": secrets.token_urlsafe(16),
        }
        return jwt.encode(payload, self.secret, algorithm=AUTH_TOKEN_ALGORITHM)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Raises:
            jwt.InvalidTokenError: If the signature, audience, issuer or expiry is invalid
        """
        return jwt.decode(
            token,
            self.secret,
            algorithms=[AUTH_TOKEN_ALGORITHM],
            audience=AUTH_TOKEN_AUDIENCE,
            issuer=AUTH_TOKEN_AUDIENCE,
        )


class PasswordManager:
    """Argon2id password management"""

    @staticmethod
    def hash_password(password: str) -> str:
        return pwd_context.hash(password)

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        try:
            return pwd_context.verify(plain_password, hashed_password)
        except (ValueError, TypeError) as e:
            logger.warning(f"Password hash could not be verified: {e}")
            return False


def check_password_requirements(password: str, username: Optional[str] = None) -> Optional[str]:
    """
    Check a new password against the password policy.

    Returns:
        None if the password is acceptable, otherwise the reason it is not
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"must be at least {MIN_PASSWORD_LENGTH} characters long"

    if password.lower() in COMMON_PASSWORDS:
        return "is too common"

    if username and password.lower() == username.lower():
        return "must not be the same as the username"

    if re.match(r"^(.)\1+$", password):  # Repeated characters
        return "must not be a single repeated character"

    return None


class Authenticator:
    """Resolves the calling user from the Authorization header"""

    def __init__(self, jwt_manager: JWTManager):
        self.jwt_manager = jwt_manager

    def authenticate(self, request: Request, db: Session) -> Optional[User]:
        header = request.headers.get("Authorization")
        if not header or not header.startswith(AUTH_HEADER_PREFIX):
            return None

        token = header[len(AUTH_HEADER_PREFIX):].strip()
        try:
            payload = self.jwt_manager.verify_token(token)
        except jwt.InvalidTokenError as e:
            logger.info(f"Rejected API token: {e}")
            return None

        subject = payload.get("sub")
        if subject is None or not str(subject).isdigit():
            logger.info("API token has no usable subject")
            return None

        user = db.query(User).filter(User.id == int(subject)).first()
        if user is None:
            logger.info(f"API token subject {subject} no longer exists")
        return user


def build_authenticator(settings: Settings) -> Authenticator:
    return Authenticator(JWTManager(settings.auth_token_secret, settings.auth_token_expire_days))

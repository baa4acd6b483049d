"""Password hashing and session token utilities"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from jose import jwt as jose_jwt
from passlib.context import CryptContext

from .config import settings
from .exceptions import AuthenticationError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_access_token(user_id: int, email: str, roles: List[str]) -> str:
    """Generate a signed session token for an authenticated user"""
    now = datetime.now(timezone.utc)
    payload = {
        'sub': str(user_id),
        'email': email,
        'roles': roles,
        'iat': now,
        'exp': now + timedelta(minutes=settings.token_expire_minutes),
    }
    return jose_jwt.encode(payload, settings.secret_key, algorithm=settings.token_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify and decode a session token"""
    try:
        payload = jose_jwt.decode(token, settings.secret_key, algorithms=[settings.token_algorithm])
    except jose_jwt.ExpiredSignatureError:
        logger.warning("Token verification failed: token expired")
        raise AuthenticationError("Invalid or expired token")
    except jose_jwt.JWTError as e:
        logger.warning("Token verification failed: %s", str(e))
        raise AuthenticationError("Invalid or expired token")

    if not str(payload.get('sub', '')).isdigit():
        raise AuthenticationError("Invalid or expired token")
    return payload

"""
FastAPI dependencies: database session, caller identity and permission guards.
"""
import logging
from typing import Generator, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from core.authorization import AuthorizationResolver
from core.config import settings
from core.context import ActorContext
from core.exceptions import AuthenticationError, AuthorizationError
from core.security import decode_access_token
from models.database import SessionLocal

logger = logging.getLogger(__name__)


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    One session per request. Routes commit explicitly once the change and
    its audit row are flushed; anything raised rolls the session back.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get(settings.cookie_name)
    if token:
        return token

    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip() or None
    return None


def get_actor(request: Request, db: Session = Depends(get_db)) -> ActorContext:
    """
    Resolve the caller from the session cookie or a Bearer token.

    Raises:
        AuthenticationError: no token, a bad token, or an inactive user
    """
    token = _extract_token(request)
    if not token:
        raise AuthenticationError("Authentication required")

    payload = decode_access_token(token)
    user_id = int(payload["sub"])
    if AuthorizationResolver(db).active_user(user_id) is None:
        raise AuthenticationError("User is unknown or inactive")

    return ActorContext(
        actor_id=user_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent")
    )


def client_context(request: Request) -> ActorContext:
    """Context for unauthenticated endpoints (login, setup)."""
    return ActorContext(
        actor_id=None,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent")
    )


def require_permission(permission: str):
    """
    Build a dependency that admits only callers holding ``permission``
    through a role or a group.

    Usage:
        @router.post("", dependencies=[Depends(require_permission("tools.create"))])
    """
    def dependency(
        actor: ActorContext = Depends(get_actor),
        db: Session = Depends(get_db)
    ) -> ActorContext:
        if not AuthorizationResolver(db).has_permission(actor.actor_id, permission):
            raise AuthorizationError(f"user {actor.actor_id} lacks {permission}")
        return actor

    return dependency

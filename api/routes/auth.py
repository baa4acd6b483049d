"""Setup, login and session endpoints"""
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from core.authorization import AuthorizationResolver
from core.config import settings
from core.context import ActorContext
from core.identity import IdentityStore
from ..dependencies import client_context, get_actor, get_db
from ..schemas import (
    LoginRequest, MeResponse, MessageResponse, SetupRequest, SetupStatus, TokenResponse, UserOut
)

router = APIRouter(tags=["auth"])


def _set_auth_cookie(response: Response, token: str):
    response.set_cookie(
        key=settings.cookie_name,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        max_age=settings.token_expire_minutes * 60,
        path="/",
    )


@router.get("/check-setup", response_model=SetupStatus)
def check_setup(db: Session = Depends(get_db)):
    return IdentityStore(db).check_setup()


@router.post("/setup", response_model=TokenResponse)
def setup(
    payload: SetupRequest,
    response: Response,
    ctx: ActorContext = Depends(client_context),
    db: Session = Depends(get_db)
):
    """Create the first super admin; refused once any user exists."""
    result = IdentityStore(db).setup(payload.email, payload.password, ctx)
    db.commit()
    _set_auth_cookie(response, result["token"])
    return result


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    response: Response,
    ctx: ActorContext = Depends(client_context),
    db: Session = Depends(get_db)
):
    result = IdentityStore(db).login(payload.email, payload.password, ctx)
    db.commit()
    _set_auth_cookie(response, result["token"])
    return result


@router.post("/logout", response_model=MessageResponse)
def logout(response: Response):
    response.delete_cookie(settings.cookie_name, path="/")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=MeResponse)
def me(actor: ActorContext = Depends(get_actor), db: Session = Depends(get_db)):
    summary = IdentityStore(db).user_summary(actor.actor_id)
    resolver = AuthorizationResolver(db)
    return MeResponse(
        user=UserOut.model_validate(summary["user"]),
        roles=[role.name for role in summary["roles"]],
        groups=[group.name for group in summary["groups"]],
        permissions=summary["permissions"],
        can_approve_requests=resolver.can_approve_any(actor.actor_id),
        can_grant_access=resolver.can_grant(actor.actor_id),
    )

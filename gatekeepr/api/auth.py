"""Auth API router: setup, login, logout, me."""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from gatekeepr.core.config import settings
from gatekeepr.core.rate_limiter import limiter
from gatekeepr.core.security import Identity, RequestContext, get_current_identity, request_context
from gatekeepr.db.session import get_db
from gatekeepr.schemas.schemas import (
    ActionResult, LoginRequest, MeResponse, SetupRequest, SetupStatus, TokenResponse,
)
from gatekeepr.services.auth_service import auth_service

router = APIRouter(tags=["auth"])


def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        max_age=settings.JWT_EXPIRY_MINUTES * 60,
        path="/",
        httponly=True,
        secure=settings.AUTH_COOKIE_SECURE,
        samesite="lax",
    )


@router.get("/check-setup", response_model=SetupStatus)
def check_setup(db: Session = Depends(get_db)):
    """Whether the system still needs its first administrator."""
    return SetupStatus(setup_required=auth_service.setup_required(db))


@router.post("/setup", response_model=TokenResponse)
def setup(
    body: SetupRequest,
    response: Response,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(request_context),
):
    """Create the first super admin. Only allowed while no users exist."""
    result = auth_service.setup(db, body, ctx)
    _set_auth_cookie(response, result["token"])
    return result


@router.post("/login", response_model=TokenResponse)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: Session = Depends(get_db),
):
    """Authenticate and set the auth cookie."""
    result = auth_service.authenticate(db, body.email, body.password, RequestContext.from_request(request))
    _set_auth_cookie(response, result["token"])
    return result


@router.post("/logout", response_model=ActionResult, response_model_exclude_none=True)
def logout(response: Response):
    """Clear the auth cookie."""
    response.delete_cookie(settings.AUTH_COOKIE_NAME, path="/")
    return ActionResult(message="Logged out successfully")


@router.get("/me", response_model=MeResponse)
def me(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Current user with live roles and effective permissions."""
    return auth_service.me(db, identity.user_id)

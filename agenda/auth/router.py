import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool
from starlette.requests import HTTPConnection

from ..db import get_db, get_session_factory
from ..errors import IdentityError
from ..models.models import Profile
from ..notifier import Notifier
from ..routes.deps import build_backend, get_gate
from ..schemas.auth import (
    LogoutRequest,
    MeResponse,
    RefreshRequest,
    SignInStartResponse,
    TokenResponse,
)
from ..session.context import AppContext
from ..session.gate import SessionGate
from ..session.screens import resolve_screen
from . import google
from .security import (
    CurrentUser,
    get_current_user,
    is_refresh_token_active,
    issue_session,
    lookup_role,
    read_token,
    revoke_refresh_token,
)


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# Stable user ids derived from the Google subject
GOOGLE_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "https://accounts.google.com")


def user_id_for_google(sub: str) -> uuid.UUID:
    return uuid.uuid5(GOOGLE_NAMESPACE, sub)


def find_or_create_profile(db: Session, sub: str, email: Optional[str]) -> Profile:
    """Profiles are created unapproved and without a role; an administrator grants both."""
    profile = db.query(Profile).filter(Profile.id == user_id_for_google(sub)).first()
    if profile is None and email:
        # Pre-provisioned by an administrator before the first sign-in
        profile = db.query(Profile).filter(Profile.google_email == email).first()
    if profile is None:
        profile = Profile(id=user_id_for_google(sub), google_email=email)
        db.add(profile)
        db.commit()
        db.refresh(profile)
        logger.info("profile_created", user_id=str(profile.id), email=email)
    elif email and profile.google_email != email:
        profile.google_email = email
        db.commit()
    return profile


def _screen_for(db: Session, profile: Profile) -> str:
    role, approved = lookup_role(db, profile.id)
    return resolve_screen(profile, role, approved).value


@router.get("/google/start", response_model=SignInStartResponse)
async def google_start(conn: HTTPConnection, redirect_to: Optional[str] = None):
    ctx = AppContext(build_backend(conn), Notifier())
    url = await ctx.sign_in_with_google(redirect_to=redirect_to)
    notifications = [t.to_dict() for t in ctx.notifier.drain()]
    if url is None:
        return JSONResponse(
            SignInStartResponse(ok=False, notifications=notifications).model_dump(),
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return SignInStartResponse(ok=True, url=url, notifications=notifications)


@router.get("/google/callback", response_model=TokenResponse)
async def google_callback(code: str, conn: HTTPConnection, state: Optional[str] = None):
    try:
        google_profile = await google.exchange_code(code)
    except IdentityError as e:
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE if e.provider_misconfigured else status.HTTP_401_UNAUTHORIZED
        raise HTTPException(status_code=status_code, detail=str(e))
    if not google_profile.email_verified:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Google email not verified")

    factory: sessionmaker = get_session_factory(conn)

    def _sign_in() -> TokenResponse:
        with factory() as db:
            profile = find_or_create_profile(db, google_profile.sub, google_profile.email)
            tokens = issue_session(db, profile)
            return TokenResponse(**tokens, screen=_screen_for(db, profile))

    tokens = await run_in_threadpool(_sign_in)
    logger.info("signed_in", provider="google", screen=tokens.screen)
    return tokens


@router.post("/refresh", response_model=TokenResponse)
def refresh(body: RefreshRequest, db: Session = Depends(get_db)):
    try:
        payload = read_token(body.refresh_token, expected_type="refresh")
    except IdentityError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    if not is_refresh_token_active(db, payload):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token revoked")
    profile = db.query(Profile).filter(Profile.id == uuid.UUID(payload["sub"])).first()
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    # Rotate: the presented token cannot be used again
    revoke_refresh_token(db, body.refresh_token)
    tokens = issue_session(db, profile)
    return TokenResponse(**tokens, screen=_screen_for(db, profile))


@router.post("/logout")
async def logout(
    conn: HTTPConnection,
    body: Optional[LogoutRequest] = None,
    user: CurrentUser = Depends(get_current_user),
):
    backend = build_backend(conn, user)
    await backend.set_session(user.access_token, body.refresh_token if body else None)
    ctx = AppContext(backend, Notifier())
    await ctx.initialize()
    ok = await ctx.sign_out()
    await ctx.teardown()
    return JSONResponse(
        {"ok": ok, "notifications": [t.to_dict() for t in ctx.notifier.drain()]},
        status_code=200 if ok else 400,
    )


@router.get("/me", response_model=MeResponse)
def me(user: CurrentUser = Depends(get_current_user)):
    return MeResponse(
        id=str(user.id),
        email=user.profile.google_email,
        role=user.role,
        is_approved=user.is_approved,
        screen=user.screen.value,
    )


@router.get("/session")
async def session_screen(gate: SessionGate = Depends(get_gate)):
    """The gate's current screen with its view: waiting, board or field work."""
    return await gate.render()


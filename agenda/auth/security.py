import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import IdentityError
from ..models.models import Profile, RefreshToken, RevokedAccessToken, UserRole
from ..session.screens import Screen, resolve_screen


http_bearer = HTTPBearer(auto_error=False)


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> Tuple[str, str, datetime]:
    now = datetime.now(tz=timezone.utc)
    expires = now + timedelta(seconds=ttl_seconds)
    jti = str(uuid.uuid4())
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int(expires.timestamp()),
        "jti": jti,
    }
    if extra:
        payload.update(extra)
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, jti, expires


def create_access_token(user_id: str, email: Optional[str] = None) -> str:
    token, _, _ = _create_token(user_id, settings.jwt_ttl_seconds, extra={"email": email, "type": "access"})
    return token


def create_refresh_token(user_id: str) -> Tuple[str, str, datetime]:
    return _create_token(user_id, settings.refresh_ttl_seconds, extra={"type": "refresh"})


def read_token(token: str, expected_type: str = "access") -> dict:
    """Decode and check a token, raising IdentityError when it is unusable."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise IdentityError("Token expired")
    except jwt.InvalidTokenError:
        raise IdentityError("Invalid token")
    if payload.get("type") != expected_type:
        raise IdentityError("Invalid token type")
    try:
        uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise IdentityError("Invalid subject")
    return payload


def decode_token(token: str, expected_type: str = "access") -> dict:
    try:
        return read_token(token, expected_type)
    except IdentityError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))


def issue_session(db: Session, profile: Profile) -> dict:
    """Create an access/refresh pair and persist the refresh token."""
    access = create_access_token(str(profile.id), profile.google_email)
    refresh, jti, expires = create_refresh_token(str(profile.id))
    db.add(RefreshToken(user_id=profile.id, jti=jti, expires_at=expires))
    db.commit()
    return {"access_token": access, "refresh_token": refresh, "token_type": "bearer"}


def revoke_refresh_token(db: Session, refresh_token: str, user_id: Optional[uuid.UUID] = None) -> bool:
    """Revoke a refresh token; with `user_id`, only when that user owns it."""
    try:
        payload = read_token(refresh_token, expected_type="refresh")
    except IdentityError:
        return False
    if user_id is not None and payload.get("sub") != str(user_id):
        raise IdentityError("Refresh token belongs to another user")
    row = db.query(RefreshToken).filter(RefreshToken.jti == payload.get("jti")).first()
    if row is None or row.revoked_at is not None:
        return False
    row.revoked_at = datetime.now(timezone.utc)
    db.commit()
    return True


def revoke_access_token(db: Session, access_token: str) -> bool:
    try:
        payload = read_token(access_token)
    except IdentityError:
        return False
    jti = payload.get("jti")
    if not jti or is_access_token_revoked(db, jti):
        return False
    db.add(
        RevokedAccessToken(
            user_id=uuid.UUID(payload["sub"]),
            jti=jti,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            revoked_at=datetime.now(timezone.utc),
        )
    )
    db.commit()
    return True


def is_access_token_revoked(db: Session, jti: Optional[str]) -> bool:
    if not jti:
        return False
    return db.query(RevokedAccessToken).filter(RevokedAccessToken.jti == jti).first() is not None



def is_refresh_token_active(db: Session, payload: dict) -> bool:
    row = db.query(RefreshToken).filter(RefreshToken.jti == payload.get("jti")).first()
    return row is not None and row.revoked_at is None


def lookup_role(db: Session, user_id: uuid.UUID) -> Tuple[Optional[str], bool]:
    """Role comes from user_roles and approval from profiles, never from the token."""
    user_role = db.query(UserRole).filter(UserRole.user_id == user_id).first()
    profile = db.query(Profile).filter(Profile.id == user_id).first()
    role = user_role.role if user_role else None
    approved = bool(profile and profile.approved_at)
    return role, approved


@dataclass
class CurrentUser:
    profile: Profile
    role: Optional[str]
    is_approved: bool
    access_token: str

    @property
    def id(self) -> uuid.UUID:
        return self.profile.id

    @property
    def screen(self) -> Screen:
        return resolve_screen(self.profile, self.role, self.is_approved)


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> CurrentUser:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(creds.credentials)
    if is_access_token_revoked(db, payload.get("jti")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token revoked")
    user_uuid = uuid.UUID(str(payload.get("sub")))
    profile = db.query(Profile).filter(Profile.id == user_uuid).first()
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    role, approved = lookup_role(db, user_uuid)
    return CurrentUser(profile=profile, role=role, is_approved=approved, access_token=creds.credentials)


def require_screen(*screens: Screen):
    """Allow the request only when the session gate would route the user to one of `screens`."""

    def _dep(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.screen not in screens:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return _dep


def require_roles(*required_roles: str):
    def _dep(user: CurrentUser = Depends(require_screen(Screen.BOARD, Screen.FIELD_WORK))) -> CurrentUser:
        if user.role not in required_roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return _dep

import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth.security import CurrentUser, require_roles
from ..db import get_db
from ..models.models import Profile, UserRole
from ..schemas.records import Role
from ..services.audit import create_audit_log


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


class ApproveRequest(BaseModel):
    role: Role


def _profile_to_dict(p: Profile, role: Optional[UserRole]) -> dict:
    return {
        "id": str(p.id),
        "email": p.google_email,
        "approved_at": p.approved_at.isoformat() if p.approved_at else None,
        "role": role.role if role else None,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


@router.get("/pending")
def list_pending(db: Session = Depends(get_db), _: CurrentUser = Depends(require_roles("Admin"))):
    """Profiles still waiting for an administrator, oldest first."""
    rows = (
        db.query(Profile, UserRole)
        .outerjoin(UserRole, UserRole.user_id == Profile.id)
        .filter((Profile.approved_at.is_(None)) | (UserRole.id.is_(None)))
        .order_by(Profile.created_at.asc())
        .all()
    )
    return [_profile_to_dict(p, r) for p, r in rows]


@router.post("/{user_id}/approve")
def approve_user(
    user_id: str,
    body: ApproveRequest,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles("Admin")),
):
    try:
        uid = uuid.UUID(str(user_id))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid id")
    profile = db.query(Profile).filter(Profile.id == uid).first()
    if not profile:
        raise HTTPException(status_code=404, detail="Not found")

    if profile.approved_at is None:
        profile.approved_at = datetime.now(timezone.utc)
        profile.approved_by = me.id
    user_role = db.query(UserRole).filter(UserRole.user_id == uid).first()
    if user_role is None:
        user_role = UserRole(user_id=uid, role=body.role)
        db.add(user_role)
    else:
        user_role.role = body.role
    create_audit_log(
        db,
        action="APPROVE",
        entity="profiles",
        actor=str(me.id),
        meta={"id": str(uid), "role": body.role},
    )
    db.commit()
    db.refresh(profile)
    logger.info("user_approved", user_id=str(uid), role=body.role, approved_by=str(me.id))
    return _profile_to_dict(profile, user_role)

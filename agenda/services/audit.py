"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import AuditLog


def compute_integrity_hash(canonical: Dict[str, Any], secret: str) -> str:
    canonical = {k: v for k, v in canonical.items() if v is not None}
    canonical_json = json.dumps(canonical, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    action: str,
    entity: str,
    actor: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    integrity_secret: Optional[str] = None,
) -> AuditLog:
    """
    Add an audit entry to the session; the caller commits.

    Args:
        db: Database session
        action: INSERT|UPDATE|UPSERT|APPROVE
        entity: Table or entity name
        actor: User id of whoever performed the action
        meta: Row id and changed values
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)
    """
    created_at = datetime.now(timezone.utc)
    secret = integrity_secret if integrity_secret is not None else settings.jwt_secret
    integrity_hash = None
    if secret:
        integrity_hash = compute_integrity_hash(
            {
                "action": action,
                "entity": entity,
                "actor": actor,
                "meta": meta,
                "created_at": created_at.isoformat(),
            },
            secret,
        )
    entry = AuditLog(
        action=action,
        entity=entity,
        actor=actor,
        meta=meta,
        integrity_hash=integrity_hash,
        created_at=created_at,
    )
    db.add(entry)
    return entry

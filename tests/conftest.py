"""
Pytest configuration and fixtures for testing.

Provides:
- A SQLite database in a per-test temporary file
- Local object storage under a temporary directory
- A change hub, backends bound to a signed-in user, and the demo week
- A FastAPI TestClient wired to all of the above
"""

import io
import uuid
from datetime import datetime, timezone
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from agenda.auth.security import create_access_token
from agenda.backend.client import AuthSession, AuthUser
from agenda.backend.local import LocalBackend
from agenda.db import Base, make_engine, make_session_factory
from agenda.errors import BackendError
from agenda.main import create_app
from agenda.models.models import Profile, UserRole
from agenda.notifier import Notifier
from agenda.services.change_hub import ChangeHub
from agenda.storage.local_provider import LocalStorageProvider
from scripts.seed_demo import seed_demo


# ============================================================================
# Infrastructure
# ============================================================================

@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'agenda-test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(base_dir=str(tmp_path / "storage"))


@pytest.fixture
def hub():
    return ChangeHub()


@pytest.fixture
def notifier():
    return Notifier()


# ============================================================================
# Data
# ============================================================================

@pytest.fixture
def demo_orders(session_factory):
    """The demo week: OS-2025-001 Segunda, OS-2025-002 Terça, OS-2025-003 Quarta."""
    with session_factory() as db:
        orders = seed_demo(db)
        return {o.os_number: o.id for o in orders}


def make_user(session_factory, role: Optional[str] = None, approved: bool = True, email: Optional[str] = None) -> uuid.UUID:
    user_id = uuid.uuid4()
    with session_factory() as db:
        db.add(Profile(
            id=user_id,
            google_email=email or f"{user_id.hex[:8]}@refrimix.example",
            approved_at=datetime.now(timezone.utc) if approved else None,
        ))
        db.flush()
        if role:
            db.add(UserRole(user_id=user_id, role=role))
        db.commit()
    return user_id


@pytest.fixture
def user_factory(session_factory):
    def _make(role: Optional[str] = None, approved: bool = True, email: Optional[str] = None) -> uuid.UUID:
        return make_user(session_factory, role=role, approved=approved, email=email)
    return _make


def token_for(user_id: uuid.UUID, email: Optional[str] = None) -> str:
    return create_access_token(str(user_id), email)


def auth_headers(user_id: uuid.UUID) -> dict:
    return {"Authorization": f"Bearer {token_for(user_id)}"}


def png_bytes(size=(8, 8), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


# ============================================================================
# Backends
# ============================================================================

class RecordingBackend(LocalBackend):
    """LocalBackend that records every call and can be told to fail writes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []
        self.fail_tables = set()

    def calls_to(self, method: str, table: Optional[str] = None):
        return [c for c in self.calls if c[0] == method and (table is None or c[1] == table)]

    def _maybe_fail(self, operation: str, table: str):
        if table in self.fail_tables:
            raise BackendError(f"{operation} on {table} rejected", table=table, operation=operation)

    async def select(self, table, eq=None, join=None, order_by=None):
        self.calls.append(("select", table, eq))
        return await super().select(table, eq=eq, join=join, order_by=order_by)

    async def insert(self, table, values):
        self.calls.append(("insert", table, values))
        self._maybe_fail("insert", table)
        return await super().insert(table, values)

    async def update(self, table, row_id, values):
        self.calls.append(("update", table, (row_id, values)))
        self._maybe_fail("update", table)
        return await super().update(table, row_id, values)

    async def upsert(self, table, values, on_conflict):
        self.calls.append(("upsert", table, values))
        self._maybe_fail("upsert", table)
        return await super().upsert(table, values, on_conflict)

    async def subscribe(self, table, callback, eq=None):
        self.calls.append(("subscribe", table, eq))
        return await super().subscribe(table, callback, eq=eq)

    async def upload(self, bucket, path, data, content_type):
        self.calls.append(("upload", bucket, path))
        self._maybe_fail("upload", bucket)
        return await super().upload(bucket, path, data, content_type)

    async def signed_url(self, bucket, path, expires_s):
        self.calls.append(("signed_url", bucket, path))
        return await super().signed_url(bucket, path, expires_s)


@pytest.fixture
def backend_factory(session_factory, hub, storage):
    def _make(user_id: Optional[uuid.UUID] = None) -> RecordingBackend:
        session = None
        if user_id is not None:
            session = AuthSession(access_token=token_for(user_id), user=AuthUser(id=user_id))
        return RecordingBackend(session_factory, hub, storage, session=session)
    return _make


@pytest.fixture
def backend(backend_factory, user_factory):
    return backend_factory(user_factory(role="Admin"))


# ============================================================================
# HTTP
# ============================================================================

@pytest.fixture
def app(session_factory, storage, hub):
    return create_app(session_factory=session_factory, storage=storage, hub=hub)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c

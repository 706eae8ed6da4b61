from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Depends
from fastapi.responses import JSONResponse
from starlette.requests import HTTPConnection

from ..auth.security import CurrentUser, get_current_user
from ..backend.client import AuthSession, AuthUser
from ..backend.local import LocalBackend
from ..db import get_session_factory
from ..notifier import Notifier
from ..services.change_hub import ChangeHub
from ..session.context import AppContext
from ..session.gate import SessionGate
from ..storage.factory import get_storage
from ..storage.provider import StorageProvider


def get_hub(conn: HTTPConnection) -> ChangeHub:
    hub = getattr(conn.app.state, "hub", None)
    if hub is None:
        hub = conn.app.state.hub = ChangeHub()
    return hub


def get_storage_provider(conn: HTTPConnection) -> StorageProvider:
    storage = getattr(conn.app.state, "storage", None)
    if storage is None:
        storage = conn.app.state.storage = get_storage()
    return storage


def build_backend(conn: HTTPConnection, user: Optional[CurrentUser] = None) -> LocalBackend:
    session = None
    if user is not None:
        session = AuthSession(
            access_token=user.access_token,
            user=AuthUser(id=user.id, email=user.profile.google_email),
        )
    return LocalBackend(get_session_factory(conn), get_hub(conn), get_storage_provider(conn), session=session)


async def get_gate(conn: HTTPConnection, user: CurrentUser = Depends(get_current_user)) -> AsyncIterator[SessionGate]:
    """Session gate for one request; its stores are closed when the response is sent."""
    ctx = AppContext(build_backend(conn, user), Notifier())
    await ctx.initialize()
    gate = SessionGate(ctx)
    try:
        yield gate
    finally:
        await gate.close()


def envelope(gate: SessionGate, ok: bool, view: Any, status_code: Optional[int] = None) -> JSONResponse:
    notifier = gate.ctx.notifier
    body: Dict[str, Any] = {
        "ok": ok,
        "notifications": [t.to_dict() for t in notifier.drain()],
        "view": view,
    }
    if status_code is None:
        status_code = 200 if ok else 400
    return JSONResponse(body, status_code=status_code)

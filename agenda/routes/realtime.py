import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from ..backend.tables import TABLES
from ..db import get_session_factory
from ..errors import IdentityError
from ..auth.security import is_access_token_revoked, lookup_role, read_token
from ..models.models import Profile
from ..session.screens import Screen, resolve_screen
from .deps import get_hub

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["realtime"])

# Tables remote clients may watch
WATCHABLE = {"service_orders", "materials_checklist", "processes_checklist", "photos", "reports"}


def _screen_for_token(websocket: WebSocket, payload: dict) -> Optional[Screen]:
    """Screen the session gate would show this token's user; None when the session is gone."""
    with get_session_factory(websocket)() as db:
        if is_access_token_revoked(db, payload.get("jti")):
            return None
        user_id = uuid.UUID(payload["sub"])
        profile = db.query(Profile).filter(Profile.id == user_id).first()
        if profile is None:
            return None
        role, approved = lookup_role(db, user_id)
        return resolve_screen(profile, role, approved)


@router.websocket("/ws/changes")
async def ws_changes(
    websocket: WebSocket,
    table: str,
    os_id: Optional[str] = None,
    token: Optional[str] = None,
):
    if not token:
        await websocket.close(code=4401)
        return
    try:
        payload = read_token(token)
    except IdentityError:
        await websocket.close(code=4401)
        return
    screen = await run_in_threadpool(_screen_for_token, websocket, payload)
    if screen is None:
        await websocket.close(code=4401)
        return
    # Waiting users see nothing but the waiting screen
    if screen not in (Screen.BOARD, Screen.FIELD_WORK):
        await websocket.close(code=4403)
        return
    if table not in WATCHABLE or table not in TABLES:
        await websocket.close(code=4404)
        return
    eq = None
    if os_id is not None:
        try:
            uuid.UUID(os_id)
        except ValueError:
            await websocket.close(code=4400)
            return
        field = "id" if table == "service_orders" else "os_id"
        eq = (field, os_id)

    hub = get_hub(websocket)
    await websocket.accept()
    await hub.connect(table, websocket, eq)
    logger.info("change_socket_connected", table=table, user_id=payload.get("sub"), os_id=os_id)
    try:
        while True:
            data = await websocket.receive_text()
            # Keep-alives only; clients never push changes through this socket
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(table, websocket, eq)
        logger.info("change_socket_closed", table=table)

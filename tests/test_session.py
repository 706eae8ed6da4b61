from datetime import datetime, timedelta, timezone

import jwt
import pytest

from agenda.config import settings
from agenda.errors import IdentityError
from agenda.models.models import RefreshToken
from agenda.notifier import Notifier
from agenda.session.context import MISCONFIGURED_TITLE, AppContext
from agenda.session.gate import SessionGate
from agenda.session.screens import Screen, can_reschedule, resolve_screen
from agenda.views.board import BoardView
from agenda.views.field_work import FieldWorkView


USER = object()


@pytest.mark.parametrize(
    "user, role, approved, expected",
    [
        (None, None, False, Screen.SIGN_IN),
        (None, "Admin", True, Screen.SIGN_IN),
        (USER, None, False, Screen.WAITING),
        (USER, None, True, Screen.WAITING),
        (USER, "Collaborator", False, Screen.WAITING),
        (USER, "Admin", True, Screen.BOARD),
        (USER, "Secretary", True, Screen.BOARD),
        (USER, "Collaborator", True, Screen.FIELD_WORK),
    ],
)
def test_resolve_screen(user, role, approved, expected):
    assert resolve_screen(user, role, approved) is expected


def test_loading_blocks_everything():
    assert resolve_screen(USER, "Admin", True, loading=True) is Screen.LOADING


def test_only_board_roles_reschedule():
    assert can_reschedule("Admin") and can_reschedule("Secretary")
    assert not can_reschedule("Collaborator")
    assert not can_reschedule(None)


def _token_claiming_role(user_id, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "role": role,
        "approved": True,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=1)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.mark.asyncio
async def test_unapproved_user_without_role_waits_whatever_the_token_claims(backend_factory, user_factory):
    user_id = user_factory(role=None, approved=False)
    backend = backend_factory()
    await backend.set_session(_token_claiming_role(user_id, "Collaborator"))

    ctx = AppContext(backend, Notifier())
    await ctx.initialize()

    assert ctx.user.id == user_id
    assert ctx.role is None
    assert ctx.is_approved is False
    assert ctx.screen is Screen.WAITING

    gate = SessionGate(ctx)
    out = await gate.render()
    assert out["screen"] == "waiting"
    assert out["waiting"]["user_id"] == str(user_id)
    assert out["waiting"]["can_sign_out"] is True
    assert "view" not in out
    assert gate.view is None
    await gate.close()


@pytest.mark.asyncio
async def test_approved_user_without_role_is_blocked(backend_factory, user_factory):
    backend = backend_factory(user_factory(role=None, approved=True))
    ctx = AppContext(backend, Notifier())
    await ctx.initialize()
    assert ctx.screen is Screen.WAITING
    await ctx.teardown()


@pytest.mark.asyncio
async def test_no_session_shows_sign_in(backend_factory):
    ctx = AppContext(backend_factory(), Notifier())
    await ctx.initialize()
    out = await SessionGate(ctx).render()
    assert out["screen"] == "sign_in"
    assert out["sign_in"]["provider"] == "google"


@pytest.mark.asyncio
async def test_gate_routes_by_role(backend_factory, user_factory, demo_orders):
    admin = AppContext(backend_factory(user_factory(role="Admin")), Notifier())
    await admin.initialize()
    gate = SessionGate(admin, week_label="Semana 42")
    out = await gate.render()
    assert out["screen"] == "board"
    assert isinstance(gate.view, BoardView)
    assert out["view"]["week_label"] == "Semana 42"
    await gate.close()

    tech = AppContext(backend_factory(user_factory(role="Collaborator")), Notifier())
    await tech.initialize()
    gate = SessionGate(tech)
    out = await gate.render()
    assert out["screen"] == "field_work"
    assert isinstance(gate.view, FieldWorkView)
    assert out["view"]["order"]["os_number"] == "OS-2025-001"
    await gate.close()


@pytest.mark.asyncio
async def test_gate_opens_requested_order_without_mounting_the_first(backend_factory, user_factory, demo_orders):
    backend = backend_factory(user_factory(role="Collaborator"))
    ctx = AppContext(backend, Notifier())
    await ctx.initialize()
    gate = SessionGate(ctx)
    wanted = str(demo_orders["OS-2025-002"])

    view = await gate.current_view(wanted)

    assert view.selected_order_id == wanted
    mounted = {str(c[2]["os_id"]) for c in backend.calls_to("select") if c[2] and "os_id" in c[2]}
    assert mounted == {wanted}
    assert len(backend.calls_to("subscribe")) == 5
    await gate.close()



@pytest.mark.asyncio
async def test_role_refreshes_on_identity_events(backend_factory, user_factory, session_factory):
    from agenda.models.models import Profile, UserRole

    user_id = user_factory(role=None, approved=False)
    backend = backend_factory()
    ctx = AppContext(backend, Notifier())
    await ctx.initialize()
    assert ctx.screen is Screen.SIGN_IN

    token = _token_claiming_role(user_id, "Admin")
    await backend.set_session(token)
    assert ctx.screen is Screen.WAITING

    # Approval alone does not reach an open session until the next identity event
    with session_factory() as db:
        db.get(Profile, user_id).approved_at = datetime.now(timezone.utc)
        db.add(UserRole(user_id=user_id, role="Secretary"))
        db.commit()
    assert ctx.screen is Screen.WAITING

    await backend.set_session(token)
    assert ctx.screen is Screen.BOARD
    assert ctx.role == "Secretary"
    await ctx.teardown()


@pytest.mark.asyncio
async def test_sign_in_with_misconfigured_provider(backend_factory, monkeypatch):
    monkeypatch.setattr(settings, "google_client_id", None)
    monkeypatch.setattr(settings, "google_client_secret", None)
    notifier = Notifier()
    ctx = AppContext(backend_factory(), notifier)

    assert await ctx.sign_in_with_google() is None
    toast = notifier.errors[-1]
    assert toast.title == MISCONFIGURED_TITLE
    assert "GOOGLE_CLIENT_ID" in toast.description


@pytest.mark.asyncio
async def test_sign_in_returns_authorization_url(backend_factory, monkeypatch):
    monkeypatch.setattr(settings, "google_client_id", "client-123")
    monkeypatch.setattr(settings, "google_client_secret", "secret")
    ctx = AppContext(backend_factory(), Notifier())
    url = await ctx.sign_in_with_google(redirect_to="/board")
    assert url.startswith("https://accounts.google.com/")
    assert "client_id=client-123" in url
    assert "state=%2Fboard" in url


@pytest.mark.asyncio
async def test_sign_out_revokes_refresh_token_and_clears_access(backend_factory, user_factory, session_factory):
    from agenda.auth.security import create_access_token, create_refresh_token

    user_id = user_factory(role="Admin")
    refresh, jti, expires = create_refresh_token(str(user_id))
    with session_factory() as db:
        db.add(RefreshToken(user_id=user_id, jti=jti, expires_at=expires))
        db.commit()

    backend = backend_factory()
    access = create_access_token(str(user_id))
    await backend.set_session(access, refresh)
    ctx = AppContext(backend, Notifier())
    await ctx.initialize()
    assert ctx.screen is Screen.BOARD

    assert await ctx.sign_out() is True
    assert ctx.screen is Screen.SIGN_IN
    with session_factory() as db:
        assert db.query(RefreshToken).filter(RefreshToken.jti == jti).one().revoked_at is not None

    # The access token of the ended session cannot be reused
    with pytest.raises(IdentityError):
        await backend.set_session(access)
    await ctx.teardown()


@pytest.mark.asyncio
async def test_sign_out_keeps_another_users_refresh_token(backend_factory, user_factory, session_factory):
    from agenda.auth.security import create_access_token, create_refresh_token

    owner_id = user_factory(role="Admin")
    caller_id = user_factory(role=None, approved=False)
    refresh, jti, expires = create_refresh_token(str(owner_id))
    with session_factory() as db:
        db.add(RefreshToken(user_id=owner_id, jti=jti, expires_at=expires))
        db.commit()

    backend = backend_factory()
    await backend.set_session(create_access_token(str(caller_id)), refresh)
    notifier = Notifier()
    ctx = AppContext(backend, notifier)
    await ctx.initialize()

    assert await ctx.sign_out() is False
    assert notifier.errors[-1].title == "Erro ao sair"
    with session_factory() as db:
        assert db.query(RefreshToken).filter(RefreshToken.jti == jti).one().revoked_at is None
    await ctx.teardown()



@pytest.mark.asyncio
async def test_teardown_releases_auth_listener(backend_factory, user_factory):
    backend = backend_factory(user_factory(role="Admin"))
    ctx = AppContext(backend, Notifier())
    await ctx.initialize()
    await ctx.teardown()
    await ctx.teardown()

    # Later identity events no longer reach the context
    await backend.sign_out()
    assert ctx.role == "Admin"

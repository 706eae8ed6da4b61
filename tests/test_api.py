import pytest
from starlette.websockets import WebSocketDisconnect

from agenda.auth import google
from agenda.auth.router import user_id_for_google
from agenda.config import settings
from conftest import auth_headers, png_bytes, token_for


def titles(body):
    return [n["title"] for n in body["notifications"]]


# ============================================================================
# Auth
# ============================================================================

def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"


def test_me_reports_role_and_screen(client, user_factory):
    user_id = user_factory(role="Secretary")
    body = client.get("/auth/me", headers=auth_headers(user_id)).json()
    assert body["id"] == str(user_id)
    assert body["role"] == "Secretary"
    assert body["is_approved"] is True
    assert body["screen"] == "board"


def test_missing_or_bad_token_is_rejected(client):
    assert client.get("/api/board").status_code == 401
    assert client.get("/api/board", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_google_start_without_credentials(client, monkeypatch):
    monkeypatch.setattr(settings, "google_client_id", None)
    r = client.get("/auth/google/start")
    assert r.status_code == 503
    assert titles(r.json()) == ["Google OAuth não configurado"]


def test_google_start_returns_authorization_url(client, monkeypatch):
    monkeypatch.setattr(settings, "google_client_id", "client-123")
    monkeypatch.setattr(settings, "google_client_secret", "secret")
    body = client.get("/auth/google/start").json()
    assert body["ok"] is True
    assert body["url"].startswith(google.AUTHORIZE_URL)


@pytest.fixture
def google_sign_in(monkeypatch):
    async def fake_exchange(code, client=None):
        return google.GoogleProfile(sub=f"sub-{code}", email=f"{code}@refrimix.example", email_verified=True)

    monkeypatch.setattr(google, "exchange_code", fake_exchange)


def test_google_callback_creates_waiting_profile(client, google_sign_in):
    r = client.get("/auth/google/callback", params={"code": "ana"})
    assert r.status_code == 200
    body = r.json()
    assert body["screen"] == "waiting"

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"}).json()
    assert me["id"] == str(user_id_for_google("sub-ana"))
    assert me["email"] == "ana@refrimix.example"
    assert me["role"] is None

    again = client.get("/auth/google/callback", params={"code": "ana"}).json()
    me_again = client.get("/auth/me", headers={"Authorization": f"Bearer {again['access_token']}"}).json()
    assert me_again["id"] == me["id"]


def test_refresh_rotates_and_logout_revokes(client, google_sign_in):
    tokens = client.get("/auth/google/callback", params={"code": "bia"}).json()

    rotated = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert rotated.status_code == 200
    new = rotated.json()
    assert client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401

    out = client.post(
        "/auth/logout",
        json={"refresh_token": new["refresh_token"]},
        headers={"Authorization": f"Bearer {new['access_token']}"},
    )
    assert out.status_code == 200
    assert out.json()["ok"] is True
    assert client.post("/auth/refresh", json={"refresh_token": new["refresh_token"]}).status_code == 401
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {new['access_token']}"}).status_code == 401


def test_logout_refuses_another_users_refresh_token(client, google_sign_in):
    victim = client.get("/auth/google/callback", params={"code": "carla"}).json()
    caller = client.get("/auth/google/callback", params={"code": "davi"}).json()

    r = client.post(
        "/auth/logout",
        json={"refresh_token": victim["refresh_token"]},
        headers={"Authorization": f"Bearer {caller['access_token']}"},
    )
    assert r.status_code == 400
    assert titles(r.json()) == ["Erro ao sair"]
    assert client.post("/auth/refresh", json={"refresh_token": victim["refresh_token"]}).status_code == 200
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {caller['access_token']}"}).status_code == 200


def test_board_rejects_token_after_sign_out(client, user_factory, demo_orders):
    headers = auth_headers(user_factory(role="Admin"))
    assert client.get("/api/board", headers=headers).status_code == 200
    assert client.post("/auth/logout", headers=headers).status_code == 200
    assert client.get("/api/board", headers=headers).status_code == 401


def test_session_screen_for_waiting_user(client, user_factory):
    user_id = user_factory(role=None, approved=False)
    body = client.get("/auth/session", headers=auth_headers(user_id)).json()
    assert body["screen"] == "waiting"
    assert body["waiting"]["user_id"] == str(user_id)


# ============================================================================
# Board
# ============================================================================

def test_board_lists_the_week(client, user_factory, demo_orders):
    body = client.get("/api/board", headers=auth_headers(user_factory(role="Admin"))).json()
    assert body["ok"] is True
    columns = {c["day"]: c for c in body["view"]["columns"]}
    assert list(columns) == ["Segunda", "Terça", "Quarta", "Quinta", "Sexta", "Sábado"]
    assert columns["Segunda"]["orders"][0]["os_number"] == "OS-2025-001"


def test_board_is_closed_to_collaborators_and_waiting_users(client, user_factory, demo_orders):
    assert client.get("/api/board", headers=auth_headers(user_factory(role="Collaborator"))).status_code == 403
    assert client.get("/api/board", headers=auth_headers(user_factory(role="Admin", approved=False))).status_code == 403


def test_drag_moves_order(client, user_factory, demo_orders):
    headers = auth_headers(user_factory(role="Admin"))
    r = client.post(
        "/api/board/drag",
        json={"draggable_id": str(demo_orders["OS-2025-001"]), "source": "Segunda", "destination": "Terça"},
        headers=headers,
    )
    assert r.status_code == 200
    body = r.json()
    assert "Ordem reagendada" in titles(body)
    columns = {c["day"]: c for c in body["view"]["columns"]}
    assert columns["Segunda"]["count"] == 0
    assert columns["Terça"]["count"] == 2

    again = client.get("/api/board", headers=headers).json()
    assert {c["day"]: c["count"] for c in again["view"]["columns"]}["Terça"] == 2


def test_drop_outside_columns_is_not_an_error(client, user_factory, demo_orders):
    r = client.post(
        "/api/board/drag",
        json={"draggable_id": str(demo_orders["OS-2025-001"]), "source": "Segunda", "destination": None},
        headers=auth_headers(user_factory(role="Secretary")),
    )
    assert r.status_code == 200
    assert r.json()["notifications"] == []


# ============================================================================
# Field work
# ============================================================================

@pytest.fixture
def tech(user_factory):
    return auth_headers(user_factory(role="Collaborator"))


def test_field_work_defaults_to_first_order(client, tech, demo_orders):
    body = client.get("/api/field-work", headers=tech).json()
    assert body["view"]["order"]["os_number"] == "OS-2025-001"
    assert body["view"]["materials"]["total"] == 5


def test_field_work_is_closed_to_admins(client, user_factory, demo_orders):
    assert client.get("/api/field-work", headers=auth_headers(user_factory(role="Admin"))).status_code == 403


def test_field_work_without_orders(client, tech):
    body = client.get("/api/field-work", headers=tech).json()
    assert body["view"]["empty"] is True


def test_toggle_material(client, tech, demo_orders):
    order_id = demo_orders["OS-2025-002"]
    view = client.get("/api/field-work", params={"order_id": str(order_id)}, headers=tech).json()["view"]
    item = view["materials"]["items"][0]

    r = client.post(f"/api/field-work/{order_id}/materials/{item['id']}", headers=tech)
    assert r.status_code == 200
    toggled = next(i for i in r.json()["view"]["materials"]["items"] if i["id"] == item["id"])
    assert toggled["done"] is True
    assert r.json()["view"]["materials"]["done"] == 1


def test_toggle_process_on_unknown_item(client, tech, demo_orders):
    order_id = demo_orders["OS-2025-002"]
    r = client.post(f"/api/field-work/{order_id}/processes/00000000-0000-0000-0000-000000000000", headers=tech)
    assert r.status_code == 400
    assert titles(r.json()) == ["Erro ao atualizar processo"]


def test_unknown_order_is_404(client, tech, demo_orders):
    r = client.post("/api/field-work/00000000-0000-0000-0000-000000000000/materials/x", headers=tech)
    assert r.status_code == 404


def test_photo_upload_and_download(client, tech, demo_orders):
    order_id = demo_orders["OS-2025-001"]
    data = png_bytes((32, 32))
    r = client.post(
        f"/api/field-work/{order_id}/photos",
        files={"file": ("evaporadora.png", data, "image/png")},
        headers=tech,
    )
    assert r.status_code == 200
    body = r.json()
    assert "Foto enviada" in titles(body)
    photo = body["view"]["photos"]["items"][0]
    assert photo["storage_path"].startswith(f"{order_id}/")
    assert photo["url"]

    signed = client.get(f"/api/photos/{photo['id']}/url", headers=tech).json()
    assert signed["expires_in"] == 3600
    download = client.get(signed["url"].replace(settings.public_base_url, ""))
    assert download.status_code == 200
    assert download.content == data


def test_photo_upload_rejects_non_images(client, tech, demo_orders):
    order_id = demo_orders["OS-2025-001"]
    r = client.post(
        f"/api/field-work/{order_id}/photos",
        files={"file": ("notas.txt", b"texto", "text/plain")},
        headers=tech,
    )
    assert r.status_code == 400
    assert titles(r.json()) == ["Erro ao enviar foto"]
    assert r.json()["view"]["photos"]["count"] == 0


def test_tampered_download_link_is_refused(client):
    assert client.get("/files/local/not-a-token").status_code == 403


def test_report_save_and_document(client, tech, demo_orders, storage):
    order_id = demo_orders["OS-2025-003"]
    r = client.put(f"/api/field-work/{order_id}/report", json={"content": "Limpeza completa."}, headers=tech)
    assert r.status_code == 200
    assert "Laudo salvo" in titles(r.json())

    view = client.get("/api/field-work", params={"order_id": str(order_id)}, headers=tech).json()["view"]
    assert view["report"]["draft"] == "Limpeza completa."

    doc = client.post(f"/api/field-work/{order_id}/report/document", headers=tech).json()
    assert doc["ok"] is True
    assert doc["view"]["document_path"] == f"reports/{order_id}.pdf"
    assert storage.read(f"reports/{order_id}.pdf").startswith(b"%PDF")


# ============================================================================
# Approval
# ============================================================================

def test_admin_approves_waiting_user(client, user_factory):
    admin = auth_headers(user_factory(role="Admin"))
    waiting_id = user_factory(role=None, approved=False)

    pending = client.get("/api/users/pending", headers=admin).json()
    assert str(waiting_id) in [p["id"] for p in pending]

    r = client.post(f"/api/users/{waiting_id}/approve", json={"role": "Collaborator"}, headers=admin)
    assert r.status_code == 200
    assert r.json()["role"] == "Collaborator"

    me = client.get("/auth/me", headers=auth_headers(waiting_id)).json()
    assert me["screen"] == "field_work"
    assert str(waiting_id) not in [p["id"] for p in client.get("/api/users/pending", headers=admin).json()]


def test_only_admins_approve(client, user_factory):
    secretary = auth_headers(user_factory(role="Secretary"))
    waiting_id = user_factory(role=None, approved=False)
    assert client.get("/api/users/pending", headers=secretary).status_code == 403
    r = client.post(f"/api/users/{waiting_id}/approve", json={"role": "Admin"}, headers=secretary)
    assert r.status_code == 403


def test_approve_rejects_unknown_role(client, user_factory):
    admin = auth_headers(user_factory(role="Admin"))
    waiting_id = user_factory(role=None, approved=False)
    r = client.post(f"/api/users/{waiting_id}/approve", json={"role": "Owner"}, headers=admin)
    assert r.status_code == 422


# ============================================================================
# Change notifications
# ============================================================================

def test_change_socket_requires_a_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/changes?table=photos&token=bad"):
            pass
    assert exc.value.code == 4401


def test_change_socket_is_closed_to_waiting_users(client, user_factory):
    user_id = user_factory(role=None, approved=False)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/ws/changes?table=service_orders&token={token_for(user_id)}"):
            pass
    assert exc.value.code == 4403



def test_change_socket_receives_reschedule(client, user_factory, demo_orders):
    user_id = user_factory(role="Admin")
    order_id = demo_orders["OS-2025-001"]
    url = f"/ws/changes?table=service_orders&os_id={order_id}&token={token_for(user_id)}"
    with client.websocket_connect(url) as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"
        client.post(
            "/api/board/drag",
            json={"draggable_id": str(order_id), "destination": "Sexta"},
            headers=auth_headers(user_id),
        )
        message = ws.receive_json()
    assert message == {"event": "UPDATE", "table": "service_orders", "data": {"id": str(order_id)}}

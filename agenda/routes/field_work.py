import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

from ..auth.security import require_screen
from ..config import settings
from ..errors import AgendaError
from ..session.gate import SessionGate
from ..session.screens import Screen
from ..views.field_work import FieldWorkView
from .deps import envelope, get_gate


router = APIRouter(prefix="/api", tags=["field-work"])


class ReportBody(BaseModel):
    content: str


async def _field_work(gate: SessionGate, order_id: Optional[str] = None) -> FieldWorkView:
    if order_id is not None:
        try:
            uuid.UUID(str(order_id))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid order id")
    view = await gate.current_view(order_id)
    if order_id is not None and view.orders.get(order_id) is None:
        raise HTTPException(status_code=404, detail="Service order not found")
    return view



@router.get("/field-work")
async def get_field_work(
    order_id: Optional[str] = None,
    _=Depends(require_screen(Screen.FIELD_WORK)),
    gate: SessionGate = Depends(get_gate),
):
    view = await _field_work(gate, order_id)
    return envelope(gate, True, await view.render())


@router.post("/field-work/{order_id}/materials/{item_id}")
async def toggle_material(
    order_id: str,
    item_id: str,
    _=Depends(require_screen(Screen.FIELD_WORK)),
    gate: SessionGate = Depends(get_gate),
):
    view = await _field_work(gate, order_id)
    ok = await view.toggle_material(item_id)
    return envelope(gate, ok, await view.render())


@router.post("/field-work/{order_id}/processes/{item_id}")
async def toggle_process(
    order_id: str,
    item_id: str,
    _=Depends(require_screen(Screen.FIELD_WORK)),
    gate: SessionGate = Depends(get_gate),
):
    view = await _field_work(gate, order_id)
    ok = await view.toggle_process(item_id)
    return envelope(gate, ok, await view.render())


@router.post("/field-work/{order_id}/photos")
async def upload_photo(
    order_id: str,
    file: UploadFile = File(...),
    _=Depends(require_screen(Screen.FIELD_WORK)),
    gate: SessionGate = Depends(get_gate),
):
    view = await _field_work(gate, order_id)
    data = await file.read()
    view.choose_file(file.filename or "photo", data, file.content_type or "application/octet-stream")
    ok = await view.upload_selected()
    return envelope(gate, ok, await view.render())


@router.put("/field-work/{order_id}/report")
async def save_report(
    order_id: str,
    body: ReportBody,
    _=Depends(require_screen(Screen.FIELD_WORK)),
    gate: SessionGate = Depends(get_gate),
):
    view = await _field_work(gate, order_id)
    view.edit_report(body.content)
    ok = await view.save_report()
    return envelope(gate, ok, await view.render())


@router.post("/field-work/{order_id}/report/document")
async def generate_report_document(
    order_id: str,
    _=Depends(require_screen(Screen.FIELD_WORK)),
    gate: SessionGate = Depends(get_gate),
):
    view = await _field_work(gate, order_id)
    path = await view.generate_report_document()
    rendered = await view.render()
    rendered["document_path"] = path
    return envelope(gate, path is not None, rendered)


@router.get("/photos/{photo_id}/url")
async def photo_url(
    photo_id: str,
    _=Depends(require_screen(Screen.BOARD, Screen.FIELD_WORK)),
    gate: SessionGate = Depends(get_gate),
):
    try:
        uuid.UUID(str(photo_id))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid photo id")
    backend = gate.ctx.backend
    try:
        photos = await backend.select("photos", eq={"id": photo_id})
        if not photos:
            raise HTTPException(status_code=404, detail="Photo not found")
        url = await backend.signed_url(settings.photos_bucket, photos[0].storage_path, settings.signed_url_ttl_seconds)
    except AgendaError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if not url:
        raise HTTPException(status_code=404, detail="Photo file not found")
    return {"id": photo_id, "url": url, "expires_in": settings.signed_url_ttl_seconds}

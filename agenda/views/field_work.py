"""
Field-work view for collaborators: one selected order with its checklists,
photo gallery and technical report.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from ..notifier import Notifier
from ..schemas.records import ChecklistItemRow, PhotoRow, ServiceOrderRow
from ..stores.checklists import ChecklistStore
from ..stores.photos import PhotoStore
from ..stores.reports import ReportStore
from ..stores.service_orders import ServiceOrderStore
from .board import order_card

logger = structlog.get_logger(__name__)

EMPTY_ORDERS = "Nenhuma ordem de serviço disponível"
EMPTY_CHECKLIST = "Nenhum item cadastrado"


class PhotoThumbnail:
    """Resolves its signed URL lazily, once per mount; expired URLs are not refreshed."""

    def __init__(self, photo: PhotoRow, store: PhotoStore) -> None:
        self.photo = photo
        self._store = store
        self._resolved = False
        self.url: Optional[str] = None

    async def resolve(self) -> Optional[str]:
        if not self._resolved:
            self._resolved = True
            self.url = await self._store.signed_url(self.photo.storage_path)
        return self.url


@dataclass
class SelectedFile:
    filename: str
    data: bytes
    content_type: str = "application/octet-stream"


class FieldWorkView:
    def __init__(
        self,
        orders: ServiceOrderStore,
        checklists: ChecklistStore,
        photos: PhotoStore,
        report: ReportStore,
        notifier: Notifier,
    ) -> None:
        self.orders = orders
        self.checklists = checklists
        self.photos = photos
        self.report = report
        self.notifier = notifier
        self.selected_order_id: Optional[str] = None
        self.report_draft = ""
        self.selected_file: Optional[SelectedFile] = None
        self._thumbnails: Dict[str, PhotoThumbnail] = {}

    # -- selection ------------------------------------------------------

    async def load(self, order_id: Optional[str] = None) -> None:
        if not self.orders.mounted:
            await self.orders.mount()
        if order_id is not None and self.orders.get(order_id) is not None:
            await self.select(order_id)
        elif self.selected_order_id is None and self.orders.orders:
            await self.select(self.orders.orders[0].id)

    @property
    def is_empty(self) -> bool:
        return not self.orders.loading and not self.orders.orders

    @property
    def selected_order(self) -> Optional[ServiceOrderRow]:
        if self.selected_order_id is None:
            return None
        return self.orders.get(self.selected_order_id)

    async def select(self, order_id) -> bool:
        if self.orders.get(order_id) is None:
            self.notifier.error("Ordem não encontrada", str(order_id))
            return False
        key = str(order_id)
        if key == self.selected_order_id:
            return True
        self.selected_order_id = key
        self.selected_file = None
        self._thumbnails = {}
        await self.checklists.mount(key)
        await self.photos.mount(key)
        await self.report.mount(key)
        self.report_draft = self.report.content
        logger.info("field_work_order_selected", order_id=key)
        return True

    # -- checklists -----------------------------------------------------

    async def toggle_material(self, item_id) -> bool:
        return await self.checklists.toggle_material(item_id)

    async def toggle_process(self, item_id) -> bool:
        return await self.checklists.toggle_process(item_id)

    # -- photos ---------------------------------------------------------

    def choose_file(self, filename: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self.selected_file = SelectedFile(filename=filename, data=data, content_type=content_type)

    async def upload_selected(self) -> bool:
        if self.selected_order_id is None:
            return False
        chosen = self.selected_file
        if chosen is None or not chosen.data:
            self.notifier.error("Selecione uma foto", "Escolha um arquivo antes de enviar.")
            return False
        ok = await self.photos.upload(chosen.filename, chosen.data, chosen.content_type)
        if ok:
            # Cleared so the same file can be chosen again
            self.selected_file = None
        return ok

    def thumbnails(self) -> List[PhotoThumbnail]:
        thumbs = []
        for photo in self.photos.photos:
            key = str(photo.id)
            if key not in self._thumbnails:
                self._thumbnails[key] = PhotoThumbnail(photo, self.photos)
            thumbs.append(self._thumbnails[key])
        return thumbs

    # -- report ---------------------------------------------------------

    def edit_report(self, content: str) -> None:
        self.report_draft = content

    async def save_report(self) -> bool:
        if self.selected_order_id is None:
            return False
        return await self.report.save(self.report_draft)

    async def generate_report_document(self) -> Optional[str]:
        if self.selected_order_id is None:
            return None
        return await self.report.generate_document()

    # -- lifecycle ------------------------------------------------------

    async def close(self) -> None:
        await self.checklists.close()
        await self.photos.close()
        await self.report.close()
        await self.orders.close()

    # -- rendering ------------------------------------------------------

    @staticmethod
    def _checklist(title: str, items: List[ChecklistItemRow]) -> Dict[str, Any]:
        done = sum(1 for i in items if i.done)
        return {
            "title": title,
            "items": [{"id": str(i.id), "label": i.label, "done": i.done} for i in items],
            "done": done,
            "total": len(items),
            "complete": bool(items) and done == len(items),
            "empty_message": EMPTY_CHECKLIST if not items else None,
        }

    async def render(self) -> Dict[str, Any]:
        if self.orders.loading:
            return {"loading": True}
        if self.is_empty:
            return {"loading": False, "empty": True, "message": EMPTY_ORDERS, "orders": []}

        order = self.selected_order
        thumbs = self.thumbnails()
        for thumb in thumbs:
            await thumb.resolve()
        return {
            "loading": False,
            "empty": False,
            "orders": [{"id": str(o.id), "os_number": o.os_number} for o in self.orders.orders],
            "order": order_card(order) if order else None,
            "materials": self._checklist("Materiais", self.checklists.materials),
            "processes": self._checklist("Processos", self.checklists.processes),
            "photos": {
                "uploading": self.photos.uploading,
                "count": len(thumbs),
                "items": [
                    {"id": str(t.photo.id), "storage_path": t.photo.storage_path, "url": t.url}
                    for t in thumbs
                ],
            },
            "report": {
                "draft": self.report_draft,
                "saved": self.report.content,
                "pdf_path": self.report.report.pdf_path if self.report.report else None,
            },
        }

import asyncio
from typing import Optional

import structlog
from starlette.concurrency import run_in_threadpool

from ..config import settings
from ..errors import AgendaError, BackendError
from ..schemas.records import ReportRow
from ..services.report_pdf import build_report_pdf
from .base import RecordStore

logger = structlog.get_logger(__name__)

REPORTS_BUCKET = "reports"


class ReportStore(RecordStore):
    """The single report of one order. Saves are upserts keyed by order id."""

    tables = ("reports",)
    state_attrs = ("report",)
    read_error_title = "Erro ao carregar laudo"

    def _reset(self) -> None:
        self.report: Optional[ReportRow] = None

    async def _read(self):
        rows = await self.backend.select("reports", eq={"os_id": self.parent_key})
        return rows[0] if rows else None

    def _apply(self, result) -> None:
        self.report = result

    @property
    def content(self) -> str:
        return (self.report.content if self.report else None) or ""

    async def save(self, content: str) -> bool:
        if self.parent_key is None:
            return False
        order_id = self.parent_key

        def optimistic():
            if self.report is not None:
                self.report = self.report.model_copy(update={"content": content})

        ok = await self._mutate(
            optimistic,
            lambda: self.backend.upsert("reports", {"os_id": order_id, "content": content}, on_conflict="os_id"),
            "Erro ao salvar laudo",
        )
        if ok:
            logger.info("report_saved", order_id=str(order_id), length=len(content))
            self.notifier.notify("Laudo salvo", "O laudo técnico foi salvo com sucesso.")
        return ok

    async def generate_document(self) -> Optional[str]:
        """Render the report to PDF, store it and record its path on the report."""
        if self.parent_key is None:
            return None
        order_id = self.parent_key
        path = f"{order_id}.pdf"
        try:
            orders = await self.backend.select("service_orders", eq={"id": order_id}, join="clients")
            if not orders:
                raise BackendError(f"service order {order_id} not found", table="service_orders")
            materials, processes, photos = await asyncio.gather(
                self.backend.select("materials_checklist", eq={"os_id": order_id}, order_by="created_at"),
                self.backend.select("processes_checklist", eq={"os_id": order_id}, order_by="created_at"),
                self.backend.select("photos", eq={"os_id": order_id}, order_by="created_at"),
            )
            images = []
            for photo in photos:
                data = await self.backend.download(settings.photos_bucket, photo.storage_path)
                if data:
                    images.append(data)
            pdf = await run_in_threadpool(build_report_pdf, orders[0], self.report, materials, processes, images)
            await self.backend.upload(REPORTS_BUCKET, path, pdf, "application/pdf")
            await self.backend.upsert("reports", {"os_id": order_id, "pdf_path": f"{REPORTS_BUCKET}/{path}"}, on_conflict="os_id")
        except AgendaError as e:
            self.notifier.error("Erro ao gerar PDF", str(e))
            return None
        logger.info("report_document_generated", order_id=str(order_id), size=len(pdf))
        self.notifier.notify("PDF gerado", "O laudo em PDF foi gerado.")
        return f"{REPORTS_BUCKET}/{path}"

import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog

from ..config import settings
from ..errors import AgendaError
from ..schemas.records import PhotoRow
from ..services.photos import photo_path, validate_photo
from .base import RecordStore

logger = structlog.get_logger(__name__)


class PhotoStore(RecordStore):
    """Photos of one order. The binary lives in object storage; rows are pointers."""

    tables = ("photos",)
    read_error_title = "Erro ao carregar fotos"

    rows: List[PhotoRow]

    def _reset(self) -> None:
        self.rows = []
        self.uploading = False

    async def _read(self):
        return await self.backend.select("photos", eq={"os_id": self.parent_key}, order_by="created_at")

    @property
    def photos(self) -> List[PhotoRow]:
        return self.rows

    async def upload(self, filename: Optional[str], data: bytes, content_type: str = "application/octet-stream") -> bool:
        if self.parent_key is None:
            return False
        order_id = self.parent_key
        try:
            image_format = validate_photo(data, settings.max_photo_bytes)
        except AgendaError as e:
            self.notifier.error("Erro ao enviar foto", str(e))
            return False
        path = photo_path(order_id, filename, image_format)

        def optimistic():
            pending = PhotoRow(
                id=uuid.uuid4(),
                os_id=uuid.UUID(str(order_id)),
                storage_path=path,
                created_at=datetime.now(timezone.utc),
            )
            self.rows = self.rows + [pending]

        async def write():
            await self.backend.upload(settings.photos_bucket, path, data, content_type)
            try:
                await self.backend.insert("photos", {"os_id": order_id, "storage_path": path})
            except AgendaError:
                # No row will ever point at the blob
                try:
                    await self.backend.delete(settings.photos_bucket, path)
                except AgendaError as e:
                    logger.warning("photo_blob_cleanup_failed", path=path, error=str(e))
                raise

        self.uploading = True
        try:
            ok = await self._mutate(optimistic, write, "Erro ao enviar foto")
        finally:
            self.uploading = False
        if ok:
            logger.info("photo_uploaded", order_id=str(order_id), path=path)
            self.notifier.notify("Foto enviada", "A foto foi adicionada com sucesso.")
            await self.refetch()
        return ok

    async def signed_url(self, path: str) -> Optional[str]:
        try:
            return await self.backend.signed_url(settings.photos_bucket, path, settings.signed_url_ttl_seconds)
        except AgendaError as e:
            logger.info("photo_url_failed", path=path, error=str(e))
            return None

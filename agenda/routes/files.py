import mimetypes

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider
from .deps import get_storage_provider


router = APIRouter(prefix="/files", tags=["files"])


@router.get("/local/{token}")
def download_local(token: str, storage: StorageProvider = Depends(get_storage_provider)):
    """Serve a file from local storage for a signed, unexpired download token."""
    if not isinstance(storage, LocalStorageProvider):
        raise HTTPException(status_code=404, detail="Not found")
    key = storage.resolve_download_token(token)
    if not key:
        raise HTTPException(status_code=403, detail="Invalid or expired link")
    data = storage.read(key)
    if data is None:
        raise HTTPException(status_code=404, detail="Not found")
    content_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return Response(
        content=data,
        media_type=content_type,
        headers={"Cache-Control": "private, max-age=300"},
    )

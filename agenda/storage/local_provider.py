"""
Local filesystem storage provider for development.
Saves files to a local directory instead of Azure Blob Storage.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from pathlib import Path

import jwt
import structlog

from ..config import settings
from ..errors import StorageError
from .provider import StorageProvider

logger = structlog.get_logger(__name__)


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider for development.

    Download URLs carry a signed, expiring token instead of the raw key so
    they behave like the time-limited URLs of the blob provider.
    """

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.local_storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        (self.base_dir / "uploads").mkdir(exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Get the local filesystem path for a given key."""
        # Remove leading slash and sanitize
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / "uploads" / clean_key

    def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Could not write {key}: {e}")

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        """Get a signed local file URL for download."""
        if not self._get_path(key).exists():
            return None
        expiry = datetime.now(timezone.utc) + timedelta(seconds=expires_s)
        token = jwt.encode(
            {"key": key.lstrip("/"), "exp": int(expiry.timestamp()), "type": "download"},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        return f"{settings.public_base_url}/files/local/{token}"

    def resolve_download_token(self, token: str) -> Optional[str]:
        """Return the key a download token grants, or None when invalid or expired."""
        try:
            payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        except jwt.InvalidTokenError:
            return None
        if payload.get("type") != "download":
            return None
        return payload.get("key")

    def exists(self, key: str) -> bool:
        """Check if a file exists locally."""
        return self._get_path(key).exists()

    def read(self, key: str) -> Optional[bytes]:
        path = self._get_path(key)
        if not path.exists():
            return None
        with open(path, "rb") as f:
            return f.read()

    def delete(self, key: str) -> None:
        """Delete a file from local storage."""
        path = self._get_path(key)
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.warning("local_storage_delete_failed", key=key, error=str(e))

"""
Photo upload checks and storage paths.
"""
import io
import os
import time
from typing import Optional

from PIL import Image, UnidentifiedImageError

from ..errors import StorageError

_FORMAT_EXT = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp", "GIF": "gif", "HEIF": "heic", "MPO": "jpg"}


def detect_image_format(data: bytes) -> str:
    """Return the Pillow format name, raising StorageError for non-images."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            return img.format or ""
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise StorageError(f"Arquivo não é uma imagem válida: {e}")


def validate_photo(data: bytes, max_bytes: int) -> str:
    if not data:
        raise StorageError("Nenhum arquivo selecionado")
    if len(data) > max_bytes:
        raise StorageError(f"Arquivo excede o limite de {max_bytes // (1024 * 1024)} MB")
    return detect_image_format(data)


def photo_extension(filename: Optional[str], image_format: str) -> str:
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    if ext:
        return ext
    return _FORMAT_EXT.get(image_format.upper(), "jpg")


def photo_path(order_id, filename: Optional[str], image_format: str, now: Optional[float] = None) -> str:
    """Blob path of a new photo: `{order_id}/{epoch_millis}.{ext}`."""
    millis = int((now if now is not None else time.time()) * 1000)
    return f"{order_id}/{millis}.{photo_extension(filename, image_format)}"

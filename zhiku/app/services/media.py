"""
Сервис для загрузки изображений.
"""

import io
import os
import secrets
from pathlib import Path
from typing import Optional, Tuple
from fastapi import UploadFile, HTTPException
import aiofiles
from PIL import Image, UnidentifiedImageError

from ..config import settings
from .sanitize import sanitize_filename


EXTENSION_MAP = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}

# Форматы Pillow, соответствующие разрешённым MIME-типам
ALLOWED_PIL_FORMATS = {"JPEG", "PNG", "GIF", "WEBP"}


class MediaService:
    """Сохранение изображений в UPLOADS_DIR, раздача через /media."""

    def __init__(self, uploads_dir: Optional[Path] = None):
        self.uploads_dir = Path(uploads_dir or settings.UPLOADS_DIR)
        self.max_size = settings.MAX_FILE_SIZE
        self.allowed_images = settings.ALLOWED_IMAGE_TYPES

        self.uploads_dir.mkdir(parents=True, exist_ok=True)

    async def _read_and_validate(self, file: UploadFile) -> Tuple[bytes, str]:
        """
        Проверяет тип, расширение и размер файла.

        Returns:
            Tuple[bytes, str]: (содержимое, расширение)

        Raises:
            HTTPException: 400 для неверного типа, 413 для слишком большого файла
        """
        content_type = file.content_type
        if content_type not in self.allowed_images:
            raise HTTPException(
                status_code=400,
                detail=f"Неподдерживаемый тип файла: {content_type}. Разрешены: {', '.join(self.allowed_images)}"
            )

        extension = Path(file.filename or "").suffix.lower()
        if extension and extension not in ALLOWED_EXTENSIONS:
            raise HTTPException(status_code=400, detail=f"Недопустимое расширение файла: {extension}")
        if not extension:
            extension = EXTENSION_MAP.get(content_type, ".jpg")

        content = await file.read()
        if len(content) > self.max_size:
            raise HTTPException(
                status_code=413,
                detail=f"Файл слишком большой. Максимальный размер: {self.max_size / 1024 / 1024:.1f} MB"
            )
        if not content:
            raise HTTPException(status_code=400, detail="Пустой файл")

        return content, extension

    def verify_image(self, content: bytes) -> Tuple[int, int]:
        """Декодирует изображение и проверяет его размеры."""
        try:
            with Image.open(io.BytesIO(content)) as image:
                image_format = image.format
                image.verify()
            with Image.open(io.BytesIO(content)) as image:
                width, height = image.size
        except (UnidentifiedImageError, OSError, SyntaxError):
            raise HTTPException(status_code=400, detail="Файл не является корректным изображением")

        if image_format not in ALLOWED_PIL_FORMATS:
            raise HTTPException(status_code=400, detail=f"Неподдерживаемый формат изображения: {image_format}")
        if width > settings.MAX_IMAGE_DIMENSION or height > settings.MAX_IMAGE_DIMENSION:
            raise HTTPException(
                status_code=400,
                detail=f"Изображение слишком большое: {width}x{height}, максимум {settings.MAX_IMAGE_DIMENSION}px"
            )
        return width, height

    async def save_image(self, file: UploadFile, folder: str = "images", verify: bool = True) -> Tuple[str, str]:
        """
        Сохраняет изображение со случайным именем.

        Returns:
            Tuple[str, str]: (относительный URL, имя файла)
        """
        content, extension = await self._read_and_validate(file)
        if verify:
            self.verify_image(content)

        folder = sanitize_filename(folder)
        target_dir = self.uploads_dir / folder
        target_dir.mkdir(parents=True, exist_ok=True)

        filename = f"{secrets.token_hex(12)}{extension}"
        async with aiofiles.open(target_dir / filename, 'wb') as f:
            await f.write(content)

        return f"/media/{folder}/{filename}", filename

    def get_file_path(self, url: str) -> Optional[Path]:
        """Путь к файлу по URL вида /media/<folder>/<file>."""
        if not url.startswith("/media/"):
            return None
        parts = url.split("/")
        if len(parts) != 4:
            return None
        return self.uploads_dir / sanitize_filename(parts[2]) / sanitize_filename(parts[3])

    async def delete_media(self, url: str) -> bool:
        """Удаляет файл по URL. Внешние ссылки не трогает."""
        file_path = self.get_file_path(url)
        if file_path and file_path.exists():
            os.remove(file_path)
            return True
        return False


# Глобальный экземпляр сервиса
_media_service: Optional[MediaService] = None


def get_media_service() -> MediaService:
    """Возвращает экземпляр MediaService."""
    global _media_service
    if _media_service is None:
        _media_service = MediaService()
    return _media_service

"""
API Routes для загрузки изображений товаров и баннеров.
"""

import logging
from fastapi import APIRouter, Depends, File, UploadFile

from ..models.user import User
from ..services.media import MediaService, get_media_service
from ..services.rate_limiter import rate_limit
from .auth import require_write

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/image", dependencies=[Depends(rate_limit("UPLOAD"))])
async def upload_image(
    file: UploadFile = File(...),
    current_user: User = Depends(require_write("PRODUCTS", "BANNERS")),
    media: MediaService = Depends(get_media_service)
):
    url, file_name = await media.save_image(file, folder="images", verify=False)
    logger.info(f"[UPLOAD] {file_name} uploaded by user #{current_user.id}")
    return {"url": url, "file_name": file_name}

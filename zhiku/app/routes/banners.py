"""
API Routes для баннеров.
"""

import logging
import re
from fastapi import APIRouter, Depends, HTTPException, Request
from typing import List, Optional

from ..models.banner import Banner, BannerCreate, BannerUpdate
from ..models.user import User
from ..services.database import DatabaseService, get_db, db_now
from ..services.rate_limiter import get_client_ip
from ..services.sanitize import is_valid_url, sanitize_text
from ..services.security_alerts import SecurityAlertService
from ..services.system_config import ConfigService
from .auth import require_read, require_write

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter()

MAX_BANNERS = 50

_SUSPICIOUS_URL_RE = re.compile(
    r"javascript:|data:|vbscript:|file:|<script|onclick|onerror",
    re.IGNORECASE
)


def is_suspicious_url(url: Optional[str]) -> bool:
    """Ссылка с опасной схемой, встроенным скриптом или не http(s)."""
    if not url:
        return False
    if _SUSPICIOUS_URL_RE.search(url):
        return True
    return not is_valid_url(url)


async def _reject_suspicious(
    db: DatabaseService,
    request: Request,
    user: User,
    title: Optional[str],
    image: Optional[str],
    link: Optional[str]
) -> None:
    bad = [url for url in (image, link) if is_suspicious_url(url)]
    if not bad:
        return
    await SecurityAlertService.create_alert(
        db,
        "SUSPICIOUS_URL",
        "high",
        f"Подозрительная ссылка в баннере «{title or ''}»",
        user_id=user.id,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        metadata={"urls": bad},
    )
    raise HTTPException(status_code=400, detail="Недопустимая ссылка в баннере")


@router.get("/", response_model=List[Banner])
async def get_banners(db: DatabaseService = Depends(get_db)):
    """Активные баннеры для главной страницы."""
    if not await ConfigService.get_value(db, "banner_enabled", True):
        return []
    banners = await db.fetch_all(
        """SELECT * FROM banners WHERE status = 'active'
           ORDER BY sort_order ASC, created_at DESC, id DESC"""
    )
    return [Banner(**banner) for banner in banners]


@admin_router.get("/", response_model=List[Banner])
async def admin_list_banners(
    current_user: User = Depends(require_read("BANNERS")),
    db: DatabaseService = Depends(get_db)
):
    banners = await db.fetch_all("SELECT * FROM banners ORDER BY sort_order ASC, created_at DESC, id DESC")
    return [Banner(**banner) for banner in banners]


@admin_router.post("/", response_model=Banner, status_code=201)
async def create_banner(
    banner_data: BannerCreate,
    request: Request,
    current_user: User = Depends(require_write("BANNERS")),
    db: DatabaseService = Depends(get_db)
):
    """
    Создаёт баннер.

    Слишком большое число баннеров и подозрительные ссылки
    фиксируются в журнале безопасности.
    """
    total = await db.count("banners")
    if total > MAX_BANNERS:
        await SecurityAlertService.create_alert(
            db,
            "EXCESSIVE_BANNER_COUNT",
            "medium",
            f"Попытка создать баннер при {total} существующих",
            user_id=current_user.id,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            metadata={"count": total},
        )
        raise HTTPException(status_code=400, detail=f"Слишком много баннеров (максимум {MAX_BANNERS})")

    await _reject_suspicious(db, request, current_user, banner_data.title, banner_data.image, banner_data.link)

    banner_dict = banner_data.model_dump()
    banner_dict["title"] = sanitize_text(banner_dict["title"])
    if banner_dict.get("description"):
        banner_dict["description"] = sanitize_text(banner_dict["description"])
    if not banner_dict["title"]:
        raise HTTPException(status_code=400, detail="Заголовок не может быть пустым")

    banner_id = await db.insert("banners", banner_dict)
    await SecurityAlertService.create_alert(
        db,
        "BANNER_CREATED",
        "info",
        f"Создан баннер #{banner_id} «{banner_dict['title']}»",
        user_id=current_user.id,
        ip_address=get_client_ip(request),
        metadata={"banner_id": banner_id},
    )

    banner = await db.fetch_one("SELECT * FROM banners WHERE id = ?", (banner_id,))
    return Banner(**banner)


@admin_router.put("/{banner_id}", response_model=Banner)
async def update_banner(
    banner_id: int,
    banner_update: BannerUpdate,
    request: Request,
    current_user: User = Depends(require_write("BANNERS")),
    db: DatabaseService = Depends(get_db)
):
    banner = await db.fetch_one("SELECT * FROM banners WHERE id = ?", (banner_id,))
    if not banner:
        raise HTTPException(status_code=404, detail="Banner not found")

    update_data = banner_update.model_dump(exclude_unset=True)
    await _reject_suspicious(
        db, request, current_user,
        update_data.get("title", banner["title"]),
        update_data.get("image"),
        update_data.get("link")
    )
    for field in ("title", "description"):
        if update_data.get(field):
            update_data[field] = sanitize_text(update_data[field])

    if update_data:
        update_data["updated_at"] = db_now()
        await db.update("banners", update_data, "id = ?", (banner_id,))

    updated = await db.fetch_one("SELECT * FROM banners WHERE id = ?", (banner_id,))
    return Banner(**updated)


@admin_router.delete("/{banner_id}")
async def delete_banner(
    banner_id: int,
    current_user: User = Depends(require_write("BANNERS")),
    db: DatabaseService = Depends(get_db)
):
    deleted = await db.delete("banners", "id = ?", (banner_id,))
    if not deleted:
        raise HTTPException(status_code=404, detail="Banner not found")
    logger.info(f"[BANNERS] Banner #{banner_id} deleted by user #{current_user.id}")
    return {"message": "Баннер удалён"}

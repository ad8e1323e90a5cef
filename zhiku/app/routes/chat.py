"""
API Routes для чата поддержки (опрос через since).
"""

import logging
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from typing import Optional

from ..models.chat import ChatSessionCreate, ChatMessageCreate
from ..models.user import User
from ..services.database import DatabaseService, get_db, db_now
from ..services.media import MediaService, get_media_service
from ..services.permissions import can_read, can_write
from ..services.rate_limiter import rate_limit
from ..services.sanitize import sanitize_text
from .auth import get_current_user_optional, require_read, require_write

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter()

MESSAGES_LIMIT = 100


async def _recent_messages(db: DatabaseService, session_id: int) -> list:
    messages = await db.fetch_all(
        """SELECT * FROM chat_messages WHERE session_id = ?
           ORDER BY id DESC LIMIT ?""",
        (session_id, MESSAGES_LIMIT)
    )
    return list(reversed(messages))


async def _get_or_create_session(
    db: DatabaseService,
    visitor_id: str,
    user: Optional[User] = None,
    visitor_name: Optional[str] = None,
    visitor_email: Optional[str] = None
) -> dict:
    session = await db.fetch_one(
        """SELECT * FROM chat_sessions WHERE visitor_id = ? AND status = 'active'
           ORDER BY id DESC LIMIT 1""",
        (visitor_id,)
    )
    if session:
        return session

    session_id = await db.insert("chat_sessions", {
        "visitor_id": visitor_id,
        "user_id": user.id if user else None,
        "visitor_name": sanitize_text(visitor_name or (user.name if user else "")) or None,
        "visitor_email": visitor_email or (user.email if user else None),
        "status": "active",
    })
    logger.info(f"[CHAT] New session #{session_id} for visitor {visitor_id}")
    return await db.fetch_one("SELECT * FROM chat_sessions WHERE id = ?", (session_id,))


@router.get("/sessions")
async def get_session(
    visitor_id: str = Query(..., min_length=1, max_length=128),
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: DatabaseService = Depends(get_db)
):
    """Активная сессия посетителя (создаётся при необходимости) и последние сообщения."""
    session = await _get_or_create_session(db, visitor_id, current_user)
    return {"session": session, "messages": await _recent_messages(db, session["id"])}


@router.post("/sessions", status_code=201)
async def create_session(
    data: ChatSessionCreate,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: DatabaseService = Depends(get_db)
):
    session = await _get_or_create_session(
        db, data.visitor_id, current_user, data.visitor_name, data.visitor_email
    )
    return {"session": session, "messages": await _recent_messages(db, session["id"])}


@router.post("/messages", status_code=201, dependencies=[Depends(rate_limit("CHAT"))])
async def send_message(
    data: ChatMessageCreate,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: DatabaseService = Depends(get_db)
):
    """Отправка сообщения посетителем или оператором."""
    session = await db.fetch_one("SELECT * FROM chat_sessions WHERE id = ?", (data.session_id,))
    if not session:
        raise HTTPException(status_code=404, detail="Сессия не найдена")

    if data.sender_type == "admin":
        if not current_user or not await can_write(db, current_user.id, current_user.role, "CUSTOMER_CHAT"):
            raise HTTPException(status_code=403, detail="Недостаточно прав для ответа в чате")
        sender_id = str(current_user.id)
        sender_name = current_user.name
    else:
        if data.visitor_id != session["visitor_id"]:
            raise HTTPException(status_code=403, detail="Нет доступа к этой сессии")
        if session["status"] != "active":
            raise HTTPException(status_code=400, detail="Сессия закрыта")
        sender_id = data.visitor_id
        sender_name = sanitize_text(data.sender_name or session["visitor_name"] or "") or None

    message = sanitize_text(data.message)
    if not message and not data.image_url:
        raise HTTPException(status_code=400, detail="Пустое сообщение")

    async with db.transaction():
        message_id = await db.insert("chat_messages", {
            "session_id": session["id"],
            "sender_type": data.sender_type,
            "sender_id": sender_id,
            "sender_name": sender_name,
            "message": message,
            "image_url": data.image_url,
        })
        await db.update(
            "chat_sessions",
            {"last_message_at": db_now(), "updated_at": db_now()},
            "id = ?",
            (session["id"],)
        )

    return {"message": await db.fetch_one("SELECT * FROM chat_messages WHERE id = ?", (message_id,))}


@router.get("/messages")
async def get_messages(
    session_id: int = Query(...),
    since: Optional[int] = Query(None, ge=0, description="ID последнего полученного сообщения"),
    visitor_id: Optional[str] = Query(None, max_length=128),
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: DatabaseService = Depends(get_db)
):
    """Новые сообщения сессии после since (владельцу сессии или оператору)."""
    session = await db.fetch_one("SELECT visitor_id FROM chat_sessions WHERE id = ?", (session_id,))
    if not session:
        raise HTTPException(status_code=404, detail="Сессия не найдена")

    if not visitor_id or visitor_id != session["visitor_id"]:
        if not current_user or not await can_read(db, current_user.id, current_user.role, "CUSTOMER_CHAT"):
            raise HTTPException(status_code=403, detail="Нет доступа к этой сессии")

    messages = await db.fetch_all(
        """SELECT * FROM chat_messages
           WHERE session_id = ? AND id > ?
           ORDER BY id LIMIT ?""",
        (session_id, since or 0, MESSAGES_LIMIT)
    )
    return {"messages": messages}


@router.post("/upload-image", dependencies=[Depends(rate_limit("CHAT_UPLOAD"))])
async def upload_chat_image(
    image: UploadFile = File(...),
    media: MediaService = Depends(get_media_service)
):
    """Загрузка изображения в чат: файл проверяется декодированием."""
    url, file_name = await media.save_image(image, folder="chat", verify=True)
    return {"url": url, "file_name": file_name}


# ==================== Админка ====================

@admin_router.get("/sessions")
async def admin_list_sessions(
    status: Optional[str] = Query(None, pattern="^(active|closed)$"),
    current_user: User = Depends(require_read("CUSTOMER_CHAT")),
    db: DatabaseService = Depends(get_db)
):
    """Сессии с последним сообщением и числом непрочитанных."""
    where = "WHERE s.status = ?" if status else ""
    params = (status,) if status else ()
    sessions = await db.fetch_all(
        f"""SELECT s.*,
                   (SELECT message FROM chat_messages m
                    WHERE m.session_id = s.id ORDER BY m.id DESC LIMIT 1) as last_message,
                   (SELECT COUNT(*) FROM chat_messages m
                    WHERE m.session_id = s.id AND m.sender_type = 'visitor' AND m.is_read = 0) as unread_count
            FROM chat_sessions s
            {where}
            ORDER BY s.last_message_at DESC, s.id DESC""",
        params
    )
    return {"sessions": sessions}


@admin_router.post("/sessions/{session_id}/read")
async def mark_session_read(
    session_id: int,
    current_user: User = Depends(require_write("CUSTOMER_CHAT")),
    db: DatabaseService = Depends(get_db)
):
    updated = await db.update(
        "chat_messages",
        {"is_read": 1},
        "session_id = ? AND sender_type = 'visitor' AND is_read = 0",
        (session_id,)
    )
    return {"marked": updated}


@admin_router.post("/sessions/{session_id}/close")
async def close_session(
    session_id: int,
    current_user: User = Depends(require_write("CUSTOMER_CHAT")),
    db: DatabaseService = Depends(get_db)
):
    changed = await db.update(
        "chat_sessions",
        {"status": "closed", "updated_at": db_now()},
        "id = ?",
        (session_id,)
    )
    if not changed:
        raise HTTPException(status_code=404, detail="Сессия не найдена")
    return {"message": "Сессия закрыта"}

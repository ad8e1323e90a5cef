"""
API Routes для товаров (публичный каталог и админка).
"""

import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional, Union

from ..models.product import Product, ProductAdmin, ProductCreate, ProductUpdate
from ..models.user import User
from ..services.database import DatabaseService, get_db, db_now
from ..services.sanitize import sanitize_text
from .auth import require_read, require_write

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter()


async def _resolve_category(db: DatabaseService, category_id: Optional[int]) -> Optional[str]:
    """Возвращает имя категории, 400 если категории нет."""
    if category_id is None:
        return None
    category = await db.fetch_one("SELECT name FROM categories WHERE id = ?", (category_id,))
    if not category:
        raise HTTPException(status_code=400, detail="Категория не найдена")
    return category["name"]


def _pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit if limit else 0,
    }


# ==================== Публичный каталог ====================

@router.get("/")
async def get_products(
    category_id: Optional[int] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: DatabaseService = Depends(get_db)
):
    """Список активных товаров с фильтрами и пагинацией."""
    conditions = ["status = 'active'"]
    params = []

    if category_id:
        conditions.append("category_id = ?")
        params.append(category_id)
    elif category:
        conditions.append("category = ?")
        params.append(category)

    if search:
        pattern = f"%{search.casefold()}%"
        conditions.append("(casefold(title) LIKE ? OR casefold(description) LIKE ?)")
        params.extend([pattern, pattern])

    where_clause = " AND ".join(conditions)
    total = await db.count("products", where_clause, tuple(params))

    products = await db.fetch_all(
        f"""SELECT * FROM products
            WHERE {where_clause}
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?""",
        tuple(params) + (limit, (page - 1) * limit)
    )

    return {
        "products": [Product(**p) for p in products],
        "pagination": _pagination(page, limit, total),
    }


@router.get("/{product_id}", response_model=Product)
async def get_product(
    product_id: int,
    db: DatabaseService = Depends(get_db)
):
    """Активный товар по ID."""
    product = await db.fetch_one(
        "SELECT * FROM products WHERE id = ? AND status = 'active'",
        (product_id,)
    )
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return Product(**product)


# ==================== Админка ====================

@admin_router.get("/")
async def admin_list_products(
    status: Optional[str] = Query(None, pattern="^(active|inactive|archived)$"),
    category_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_read("PRODUCTS")),
    db: DatabaseService = Depends(get_db)
):
    """Все товары, включая неактивные и архивные."""
    conditions = []
    params = []

    if status:
        conditions.append("status = ?")
        params.append(status)
    if category_id:
        conditions.append("category_id = ?")
        params.append(category_id)
    if search:
        pattern = f"%{search.casefold()}%"
        conditions.append("(casefold(title) LIKE ? OR casefold(description) LIKE ?)")
        params.extend([pattern, pattern])

    where_clause = " AND ".join(conditions) if conditions else "1=1"
    total = await db.count("products", where_clause, tuple(params))
    products = await db.fetch_all(
        f"""SELECT * FROM products WHERE {where_clause}
            ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
        tuple(params) + (limit, (page - 1) * limit)
    )

    return {
        "products": [ProductAdmin(**p) for p in products],
        "pagination": _pagination(page, limit, total),
    }


async def _insert_product(db: DatabaseService, data: ProductCreate) -> int:
    category_name = await _resolve_category(db, data.category_id)
    values = data.model_dump()
    values["title"] = sanitize_text(values["title"])
    values["price"] = float(values["price"])
    values["tags"] = json.dumps(values["tags"], ensure_ascii=False)
    values["category"] = category_name
    return await db.insert("products", values)


@admin_router.post("/", status_code=201)
async def create_products(
    payload: Union[ProductCreate, List[ProductCreate]],
    current_user: User = Depends(require_write("PRODUCTS")),
    db: DatabaseService = Depends(get_db)
):
    """Создаёт один товар или пакет товаров."""
    items = payload if isinstance(payload, list) else [payload]
    if not items:
        raise HTTPException(status_code=400, detail="Список товаров пуст")

    async with db.transaction():
        ids = [await _insert_product(db, item) for item in items]

    placeholders = ", ".join(["?" for _ in ids])
    products = await db.fetch_all(
        f"SELECT * FROM products WHERE id IN ({placeholders}) ORDER BY id", tuple(ids)
    )
    logger.info(f"[PRODUCTS] Created {len(ids)} products by user #{current_user.id}")

    if isinstance(payload, list):
        return {"products": [ProductAdmin(**p) for p in products], "count": len(products)}
    return ProductAdmin(**products[0])


async def _get_product_or_404(db: DatabaseService, product_id: int) -> dict:
    product = await db.fetch_one("SELECT * FROM products WHERE id = ?", (product_id,))
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@admin_router.get("/{product_id}", response_model=ProductAdmin)
async def admin_get_product(
    product_id: int,
    current_user: User = Depends(require_read("PRODUCTS")),
    db: DatabaseService = Depends(get_db)
):
    return ProductAdmin(**await _get_product_or_404(db, product_id))


@admin_router.put("/{product_id}", response_model=ProductAdmin)
async def update_product(
    product_id: int,
    product_update: ProductUpdate,
    current_user: User = Depends(require_write("PRODUCTS")),
    db: DatabaseService = Depends(get_db)
):
    """Обновляет товар. Имя категории синхронизируется с category_id."""
    await _get_product_or_404(db, product_id)
    update_data = product_update.model_dump(exclude_unset=True)

    if "category_id" in update_data:
        update_data["category"] = await _resolve_category(db, update_data["category_id"])
    if update_data.get("price") is not None:
        update_data["price"] = float(update_data["price"])
    if "tags" in update_data:
        update_data["tags"] = json.dumps(update_data["tags"] or [], ensure_ascii=False)
    if update_data.get("title"):
        update_data["title"] = sanitize_text(update_data["title"])

    if update_data:
        update_data["updated_at"] = db_now()
        await db.update("products", update_data, "id = ?", (product_id,))

    return ProductAdmin(**await _get_product_or_404(db, product_id))


@admin_router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    current_user: User = Depends(require_write("PRODUCTS")),
    db: DatabaseService = Depends(get_db)
):
    """Мягкое удаление: товар переводится в архив."""
    await _get_product_or_404(db, product_id)
    await db.update(
        "products",
        {"status": "archived", "updated_at": db_now()},
        "id = ?",
        (product_id,)
    )
    logger.info(f"[PRODUCTS] Product {product_id} archived by user #{current_user.id}")
    return {"message": "Товар перемещён в архив"}

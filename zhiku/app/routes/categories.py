"""
API Routes для категорий.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import List

from ..models.category import Category, CategoryCreate, CategoryUpdate
from ..models.user import User
from ..services.database import DatabaseService, get_db, db_now
from .auth import require_write

router = APIRouter()

_CATEGORY_SELECT = """
    SELECT c.*,
           (SELECT COUNT(*) FROM products p
            WHERE p.category_id = c.id AND p.status = 'active') as product_count
    FROM categories c
"""


@router.get("/", response_model=List[Category])
async def get_categories(db: DatabaseService = Depends(get_db)):
    """Категории с количеством активных товаров."""
    categories = await db.fetch_all(f"{_CATEGORY_SELECT} ORDER BY c.sort_order, c.id")
    return [Category(**cat) for cat in categories]


@router.get("/{category_id}", response_model=Category)
async def get_category(category_id: int, db: DatabaseService = Depends(get_db)):
    category = await db.fetch_one(f"{_CATEGORY_SELECT} WHERE c.id = ?", (category_id,))
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return Category(**category)


async def _ensure_unique_name(db: DatabaseService, name: str, exclude_id: int = 0) -> None:
    duplicate = await db.fetch_one(
        "SELECT id FROM categories WHERE name = ? AND id != ?",
        (name, exclude_id)
    )
    if duplicate:
        raise HTTPException(status_code=400, detail="Категория с таким названием уже существует")


@router.post("/", response_model=Category, status_code=201)
async def create_category(
    data: CategoryCreate,
    current_user: User = Depends(require_write("CATEGORIES")),
    db: DatabaseService = Depends(get_db)
):
    await _ensure_unique_name(db, data.name)
    category_id = await db.insert("categories", data.model_dump())
    return await get_category(category_id, db)


@router.put("/{category_id}", response_model=Category)
async def update_category(
    category_id: int,
    data: CategoryUpdate,
    current_user: User = Depends(require_write("CATEGORIES")),
    db: DatabaseService = Depends(get_db)
):
    """Обновляет категорию. При смене имени обновляется и имя в товарах."""
    existing = await db.fetch_one("SELECT * FROM categories WHERE id = ?", (category_id,))
    if not existing:
        raise HTTPException(status_code=404, detail="Category not found")

    update_data = data.model_dump(exclude_unset=True)
    if update_data.get("name"):
        await _ensure_unique_name(db, update_data["name"], category_id)

    if update_data:
        update_data["updated_at"] = db_now()
        async with db.transaction():
            await db.update("categories", update_data, "id = ?", (category_id,))
            if update_data.get("name") and update_data["name"] != existing["name"]:
                await db.update(
                    "products",
                    {"category": update_data["name"]},
                    "category_id = ?",
                    (category_id,)
                )

    return await get_category(category_id, db)


@router.delete("/{category_id}")
async def delete_category(
    category_id: int,
    current_user: User = Depends(require_write("CATEGORIES")),
    db: DatabaseService = Depends(get_db)
):
    """Удаляет пустую категорию."""
    existing = await db.fetch_one("SELECT id FROM categories WHERE id = ?", (category_id,))
    if not existing:
        raise HTTPException(status_code=404, detail="Category not found")

    products = await db.count("products", "category_id = ?", (category_id,))
    if products:
        raise HTTPException(status_code=400, detail=f"В категории есть товары ({products}), удаление невозможно")

    await db.delete("categories", "id = ?", (category_id,))
    return {"message": "Категория удалена"}

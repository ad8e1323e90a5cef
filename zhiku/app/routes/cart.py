"""
API Routes для корзины.
"""

from fastapi import APIRouter, Depends, HTTPException
from decimal import Decimal

from ..models.cart import CartItemCreate, CartItemUpdate, CartItemWithProduct, CartSummary
from ..models.user import User
from ..services.database import DatabaseService, get_db, db_now, to_money
from .auth import get_current_user

router = APIRouter()


@router.get("/", response_model=CartSummary)
async def get_cart(
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Корзина пользователя с итогами."""
    items = await db.fetch_all(
        """SELECT ci.*,
                  p.title as product_title,
                  p.price as product_price,
                  p.cover_image as product_cover_image,
                  p.status as product_status
           FROM cart_items ci
           JOIN products p ON ci.product_id = p.id
           WHERE ci.user_id = ?
           ORDER BY ci.created_at DESC, ci.id DESC""",
        (current_user.id,)
    )

    total_items = sum(item["quantity"] for item in items)
    total_amount = sum(
        (to_money(item["product_price"]) * item["quantity"] for item in items),
        Decimal("0.00")
    )

    return CartSummary(
        items=[CartItemWithProduct(**item) for item in items],
        total_items=total_items,
        total_amount=to_money(total_amount),
    )


@router.post("/", status_code=201)
async def add_to_cart(
    item: CartItemCreate,
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Добавляет товар в корзину. Повторное добавление увеличивает количество."""
    product = await db.fetch_one(
        "SELECT id FROM products WHERE id = ? AND status = 'active'",
        (item.product_id,)
    )
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    existing = await db.fetch_one(
        "SELECT * FROM cart_items WHERE user_id = ? AND product_id = ?",
        (current_user.id, item.product_id)
    )

    if existing:
        await db.update(
            "cart_items",
            {"quantity": existing["quantity"] + item.quantity, "updated_at": db_now()},
            "id = ?",
            (existing["id"],)
        )
        item_id = existing["id"]
    else:
        item_id = await db.insert("cart_items", {
            "user_id": current_user.id,
            "product_id": item.product_id,
            "quantity": item.quantity,
        })

    cart_item = await db.fetch_one("SELECT * FROM cart_items WHERE id = ?", (item_id,))
    return {"item": cart_item, "message": "Товар добавлен в корзину"}


async def _get_own_item(db: DatabaseService, item_id: int, user_id: int) -> dict:
    cart_item = await db.fetch_one(
        "SELECT * FROM cart_items WHERE id = ? AND user_id = ?",
        (item_id, user_id)
    )
    if not cart_item:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return cart_item


@router.put("/{item_id}")
async def update_cart_item(
    item_id: int,
    item_update: CartItemUpdate,
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Устанавливает количество товара."""
    await _get_own_item(db, item_id, current_user.id)
    await db.update(
        "cart_items",
        {"quantity": item_update.quantity, "updated_at": db_now()},
        "id = ?",
        (item_id,)
    )
    return {"item": await _get_own_item(db, item_id, current_user.id)}


@router.delete("/{item_id}")
async def remove_from_cart(
    item_id: int,
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    await _get_own_item(db, item_id, current_user.id)
    await db.delete("cart_items", "id = ?", (item_id,))
    return {"message": "Товар удалён из корзины"}


@router.delete("/")
async def clear_cart(
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Очищает корзину."""
    removed = await db.delete("cart_items", "user_id = ?", (current_user.id,))
    return {"message": "Корзина очищена", "removed": removed}

from typing import List, Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core.auth import get_cart_owner, get_current_user, guest_owner_id
from core.database import get_db
from core.errors import ValidationError
from models.user import User
from utils import cart as cart_store

router = APIRouter(prefix="/api/cart", tags=["cart"])


class CartLineBody(BaseModel):
    artwork_id: str
    quantity: int = 1
    item_type: str = "ORIGINAL"
    print_size: Optional[str] = None


class QuantityBody(BaseModel):
    quantity: int


class MergeBody(BaseModel):
    items: List[CartLineBody] = Field(default_factory=list)
    guest_session: Optional[str] = None


@router.get("")
def get_cart(owner_id: str = Depends(get_cart_owner), db: Session = Depends(get_db)):
    return cart_store.get_cart(db, owner_id)


@router.post("")
def add_to_cart(body: CartLineBody, owner_id: str = Depends(get_cart_owner), db: Session = Depends(get_db)):
    cart_store.add_item(db, owner_id, body.artwork_id, body.quantity, body.item_type, body.print_size)
    return cart_store.get_cart(db, owner_id)


@router.put("/{item_id}")
def update_cart_item(item_id: int, body: QuantityBody, owner_id: str = Depends(get_cart_owner), db: Session = Depends(get_db)):
    cart_store.update_quantity(db, owner_id, item_id, body.quantity)
    return cart_store.get_cart(db, owner_id)


@router.delete("/{item_id}")
def remove_cart_item(item_id: int, owner_id: str = Depends(get_cart_owner), db: Session = Depends(get_db)):
    cart_store.remove_item(db, owner_id, item_id)
    return cart_store.get_cart(db, owner_id)


@router.delete("")
def clear_cart(owner_id: str = Depends(get_cart_owner), db: Session = Depends(get_db)):
    removed = cart_store.clear(db, owner_id)
    return {"ok": True, "removed": removed}


@router.post("/merge")
def merge_cart(body: MergeBody, request: Request, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Fold a guest cart into the signed-in user's cart (called right after login)."""
    session_id = (body.guest_session or request.headers.get("X-Cart-Session") or "").strip()
    if len(session_id) > 100:
        raise ValidationError("Cart session id is too long")
    guest_items = [
        {"artwork_id": line.artwork_id, "quantity": line.quantity, "item_type": line.item_type, "print_size": line.print_size}
        for line in body.items
    ]
    result = cart_store.merge_guest_cart(
        db,
        user.uid,
        guest_items,
        guest_owner_id(session_id) if session_id else None,
    )
    result["cart"] = cart_store.get_cart(db, user.uid)
    return result

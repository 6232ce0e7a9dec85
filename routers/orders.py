from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core.auth import get_current_user, require_admin, is_admin
from core.database import get_db
from core.errors import Forbidden
from models.user import User
from utils import order_state
from utils.orders import create_order, ensure_can_view, list_orders, list_user_orders
from utils.rate_limit import checkout_throttle, enforce

router = APIRouter(prefix="/api/orders", tags=["orders"])


class OrderLineBody(BaseModel):
    artwork_id: str
    quantity: int = 1
    item_type: str = "ORIGINAL"
    print_size: Optional[str] = None


class CreateOrderBody(BaseModel):
    # Omit to check out the caller's cart
    items: Optional[List[OrderLineBody]] = None
    shipping_address: dict = Field(default_factory=dict)
    payment_method: str = "card"
    gift_card_code: Optional[str] = None
    customer_notes: Optional[str] = Field(default=None, max_length=2000)


class ShipBody(BaseModel):
    tracking_number: str = ""
    carrier: Optional[str] = None
    notes: Optional[str] = None


class NotesBody(BaseModel):
    notes: Optional[str] = None


class CancelBody(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


@router.post("", status_code=201)
def place_order(body: CreateOrderBody, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    enforce(checkout_throttle, f"checkout:{user.uid}", "Too many checkout attempts. Please wait a few minutes.")
    items = None
    if body.items is not None:
        items = [
            {"artwork_id": i.artwork_id, "quantity": i.quantity, "item_type": i.item_type, "print_size": i.print_size}
            for i in body.items
        ]
    order = create_order(
        db,
        user.uid,
        items,
        body.shipping_address,
        body.payment_method,
        gift_card_code=body.gift_card_code,
        customer_notes=body.customer_notes,
    )
    return {"order": order.to_dict()}


@router.get("")
def admin_list_orders(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    orders, pagination = list_orders(db, status=status, search=search, page=page, limit=limit)
    return {"orders": [o.to_dict(include_admin=True) for o in orders], "pagination": pagination}


@router.get("/mine")
def my_orders(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"orders": [o.to_dict() for o in list_user_orders(db, user.uid)]}


@router.get("/artist-confirm")
def artist_confirm(token: str = "", action: str = "", db: Session = Depends(get_db)):
    """Public link from the artist availability email."""
    order = order_state.artist_respond(db, token, action)
    if action.strip().lower() == "confirm":
        message = "Thank you. The artwork is confirmed as available."
    else:
        message = "Thank you. The order has been cancelled and the buyer will be notified."
    return {"message": message, "orderId": order.id, "status": order.status.value}


@router.get("/{order_id}")
def get_order(order_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    admin = is_admin(user)
    order = order_state.get_order(db, order_id)
    ensure_can_view(order, user, admin)
    return {"order": order.to_dict(include_admin=admin)}


@router.post("/{order_id}/request-confirmation")
def request_confirmation(order_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    order = order_state.request_confirmation(db, order_id)
    return {"order": order.to_dict(include_admin=True)}


@router.put("/{order_id}/confirm")
def confirm_order(order_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    order = order_state.confirm(db, order_id, admin.uid)
    return {"order": order.to_dict(include_admin=True)}


@router.put("/{order_id}/ship")
def ship_order(order_id: str, body: ShipBody, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    order = order_state.ship(db, order_id, body.tracking_number, body.carrier, body.notes, shipped_by=admin.uid)
    return {"order": order.to_dict(include_admin=True)}


@router.put("/{order_id}/deliver")
def deliver_order(order_id: str, body: Optional[NotesBody] = None, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    order = order_state.deliver(db, order_id, body.notes if body else None)
    return {"order": order.to_dict(include_admin=True)}


@router.put("/{order_id}/cancel")
def cancel_order(order_id: str, body: Optional[CancelBody] = None, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    admin = is_admin(user)
    order = order_state.get_order(db, order_id)
    if not admin and order.user_uid != user.uid:
        raise Forbidden("You can only cancel your own orders")
    order = order_state.cancel(db, order_id, body.reason if body else None)
    return {"order": order.to_dict(include_admin=admin)}


@router.put("/{order_id}/notes")
def set_notes(order_id: str, body: NotesBody, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    order = order_state.set_notes(db, order_id, body.notes)
    return {"order": order.to_dict(include_admin=True)}

"""
Order status state machine.

    PENDING --PAYMENT_CONFIRMED--> PAID --REQUEST_CONFIRMATION--> AWAITING_CONFIRMATION
        --CONFIRM--> CONFIRMED --SHIP--> SHIPPED --DELIVER--> DELIVERED
    any non-terminal --CANCEL--> CANCELLED

Each transition is a compare-and-set on the current status: the UPDATE only
matches while the order is still in the status that was read. Side effects run
in the same transaction; notifications go out after commit.
"""
import enum
import secrets
from datetime import timedelta
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session

from core.config import logger, ARTIST_CONFIRMATION_TTL_HOURS
from core.errors import NotFound, InvalidTransition, ValidationError, Expired
from models.artwork import Artwork
from models.order import Order, OrderStatus, ItemType, TERMINAL_STATUSES
from utils import giftcards
from utils.notifications import notify_artist_confirmation, notify_status_change
from utils.validation import utcnow, as_utc

ARTIST_DECLINE_REASON = "Artwork not available - Artist declined"


class OrderEvent(str, enum.Enum):
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    REQUEST_CONFIRMATION = "REQUEST_CONFIRMATION"
    CONFIRM = "CONFIRM"
    SHIP = "SHIP"
    DELIVER = "DELIVER"
    CANCEL = "CANCEL"


TRANSITIONS = {
    (OrderStatus.PENDING, OrderEvent.PAYMENT_CONFIRMED): OrderStatus.PAID,
    (OrderStatus.PAID, OrderEvent.REQUEST_CONFIRMATION): OrderStatus.AWAITING_CONFIRMATION,
    (OrderStatus.AWAITING_CONFIRMATION, OrderEvent.CONFIRM): OrderStatus.CONFIRMED,
    (OrderStatus.CONFIRMED, OrderEvent.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.SHIPPED, OrderEvent.DELIVER): OrderStatus.DELIVERED,
}


def next_status(current: OrderStatus, event: OrderEvent) -> OrderStatus:
    if event == OrderEvent.CANCEL:
        if current in TERMINAL_STATUSES:
            raise InvalidTransition(current, event)
        return OrderStatus.CANCELLED
    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransition(current, event)
    return target


def get_order(db: Session, order_id: str) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise NotFound("Order not found")
    return order


def transition(db: Session, order: Order, event: OrderEvent, values: Optional[dict] = None) -> OrderStatus:
    """
    Move order along event, writing values with the status. Does not commit.
    Raises InvalidTransition (after rolling back) if the order moved concurrently.
    """
    from_status = order.status
    target = next_status(from_status, event)
    changes = {getattr(Order, key): value for key, value in (values or {}).items()}
    changes[Order.status] = target
    changes[Order.updated_at] = utcnow()

    updated = (
        db.query(Order)
        .filter(Order.id == order.id, Order.status == from_status)
        .update(changes, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        current = db.query(Order.status).filter(Order.id == order.id).scalar()
        logger.warning(f"[orders] {order.id} moved concurrently ({from_status.value} -> {current}); {event.value} rejected")
        raise InvalidTransition(current or from_status, event)
    logger.info(f"[orders] {order.id} {from_status.value} -> {target.value} ({event.value})")
    return target


def _commit(db: Session, order: Order) -> Order:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    return order


def append_note(existing: Optional[str], label: str, text: Optional[str]) -> Optional[str]:
    text = (text or "").strip()
    if not text:
        return existing
    line = f"{label}: {text}"
    return f"{existing}\n{line}" if existing else line


def request_confirmation(db: Session, order_id: str) -> Order:
    order = get_order(db, order_id)
    now = utcnow()
    transition(db, order, OrderEvent.REQUEST_CONFIRMATION, {
        "artist_notified_at": now,
        "artist_confirmation_token": secrets.token_hex(32),
        "artist_confirmation_expires_at": now + timedelta(hours=ARTIST_CONFIRMATION_TTL_HOURS),
    })
    _commit(db, order)
    notify_artist_confirmation(db, order)
    return order


def confirm(db: Session, order_id: str, admin_uid: str) -> Order:
    order = get_order(db, order_id)
    transition(db, order, OrderEvent.CONFIRM, {
        "admin_confirmed_at": utcnow(),
        "admin_confirmed_by": admin_uid,
    })
    _commit(db, order)
    notify_status_change(db, order, OrderEvent.CONFIRM.value)
    return order


def artist_respond(db: Session, token: str, action: str) -> Order:
    action = (action or "").strip().lower()
    if action not in ("confirm", "decline"):
        raise ValidationError("Action must be 'confirm' or 'decline'")
    token = (token or "").strip()
    if not token:
        raise ValidationError("Confirmation token is required")

    order = db.query(Order).filter(Order.artist_confirmation_token == token).first()
    if not order:
        raise NotFound("Confirmation link is invalid")
    expires = as_utc(order.artist_confirmation_expires_at)
    if expires and utcnow() > expires:
        raise Expired("Confirmation link has expired")

    event = OrderEvent.CONFIRM if action == "confirm" else OrderEvent.CANCEL
    if order.status != OrderStatus.AWAITING_CONFIRMATION:
        raise InvalidTransition(order.status, event)

    if action == "decline":
        logger.info(f"[orders] artist declined {order.id}")
        return cancel(db, order.id, ARTIST_DECLINE_REASON)

    transition(db, order, OrderEvent.CONFIRM, {"artist_confirmed_at": utcnow()})
    _commit(db, order)
    notify_status_change(db, order, OrderEvent.CONFIRM.value)
    return order


def ship(db: Session, order_id: str, tracking_number: str, carrier: Optional[str] = None,
         notes: Optional[str] = None, shipped_by: Optional[str] = None) -> Order:
    tracking = (tracking_number or "").strip()
    if not tracking:
        raise ValidationError("Tracking number is required")
    order = get_order(db, order_id)
    transition(db, order, OrderEvent.SHIP, {
        "shipped_at": utcnow(),
        "tracking_number": tracking,
        "carrier": (carrier or "").strip() or None,
        "shipped_by": shipped_by,
        "admin_notes": append_note(order.admin_notes, "Shipping", notes),
    })
    _commit(db, order)
    notify_status_change(db, order, OrderEvent.SHIP.value)
    return order


def deliver(db: Session, order_id: str, notes: Optional[str] = None) -> Order:
    order = get_order(db, order_id)
    transition(db, order, OrderEvent.DELIVER, {
        "delivered_at": utcnow(),
        "admin_notes": append_note(order.admin_notes, "Delivery", notes),
    })
    _commit(db, order)
    notify_status_change(db, order, OrderEvent.DELIVER.value)
    return order


def cancel(db: Session, order_id: str, reason: Optional[str] = None) -> Order:
    """Cancel and undo checkout effects: original stock goes back on sale, gift card debit is credited back."""
    order = get_order(db, order_id)
    try:
        transition(db, order, OrderEvent.CANCEL, {
            "cancelled_at": utcnow(),
            "cancellation_reason": (reason or "").strip() or None,
        })
        for item in order.items:
            if item.item_type == ItemType.ORIGINAL:
                db.query(Artwork).filter(Artwork.id == item.artwork_id).update(
                    {Artwork.in_stock: True}, synchronize_session=False
                )
        if order.gift_card_code and Decimal(order.gift_card_amount or 0) > 0:
            try:
                giftcards.restore(db, order.gift_card_code, order.gift_card_amount)
            except NotFound:
                logger.warning(f"[orders] gift card {order.gift_card_code[:8]}**** on {order.id} no longer exists; nothing to restore")
    except InvalidTransition:
        raise
    except Exception:
        db.rollback()
        raise
    _commit(db, order)
    notify_status_change(db, order, OrderEvent.CANCEL.value)
    return order


def set_notes(db: Session, order_id: str, notes: Optional[str]) -> Order:
    order = get_order(db, order_id)
    order.admin_notes = (notes or "").strip() or None
    _commit(db, order)
    return order

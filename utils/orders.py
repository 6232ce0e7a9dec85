"""
Order materializer and order queries.

create_order turns a cart (or an explicit item list) into a PENDING order in a
single transaction: price snapshot, stock flip for originals, cart clear and
gift card debit either all happen or none do.
"""
import math
from decimal import Decimal
from typing import Optional
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from core.config import logger, BASE_CURRENCY
from core.errors import NotFound, OutOfStock, ValidationError, Forbidden
from models.artwork import Artwork
from models.order import Order, OrderItem, OrderStatus, ItemType, PaymentMethod
from models.user import User
from utils import cart as cart_store
from utils import giftcards
from utils.payments import mark_paid
from utils.validation import to_money, validate_shipping_address

MAX_PAGE_SIZE = 100


def parse_payment_method(value) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value or "").strip().lower())
    except ValueError:
        raise ValidationError("Payment method must be 'card' or 'bank'")


def _collect_lines(db: Session, owner_uid: str, items: Optional[list]) -> list[tuple]:
    """Normalized (artwork_id, ItemType, print_size, quantity) lines with duplicates folded."""
    if items is None:
        raw = [
            {"artwork_id": line.artwork_id, "item_type": line.item_type, "print_size": line.print_size, "quantity": line.quantity}
            for line in cart_store.get_lines(db, owner_uid)
        ]
    else:
        raw = items

    folded = {}
    for entry in raw:
        artwork_id = str(entry.get("artwork_id") or "").strip()
        if not artwork_id:
            raise ValidationError("Each item needs an artwork_id")
        kind, size, qty = cart_store.normalize_line(entry.get("item_type"), entry.get("print_size"), entry.get("quantity", 1))
        key = (artwork_id, kind, size)
        if key in folded and kind == ItemType.PRINT:
            folded[key] += qty
        else:
            folded[key] = qty
    return [(artwork_id, kind, size, qty) for (artwork_id, kind, size), qty in folded.items()]


def create_order(
    db: Session,
    owner_uid: str,
    items: Optional[list],
    shipping_address: dict,
    payment_method,
    gift_card_code: Optional[str] = None,
    customer_notes: Optional[str] = None,
    currency: str = BASE_CURRENCY,
) -> Order:
    """
    Materialize an order. items=None uses the owner's cart.

    Raises ValidationError (empty or malformed input), NotFound (unknown
    artwork or gift card), OutOfStock (an original already sold) and the gift
    card errors. Nothing is persisted when any of them is raised.
    """
    ok, err = validate_shipping_address(shipping_address)
    if not ok:
        raise ValidationError(err)
    method = parse_payment_method(payment_method)

    lines = _collect_lines(db, owner_uid, items)
    if not lines:
        raise ValidationError("Cart is empty")

    ids = list({artwork_id for artwork_id, _, _, _ in lines})
    artworks = {a.id: a for a in db.query(Artwork).filter(Artwork.id.in_(ids)).all()}
    for artwork_id in ids:
        if artwork_id not in artworks:
            raise NotFound(f"Artwork not found: {artwork_id}")

    for artwork_id, kind, _, _ in lines:
        artwork = artworks[artwork_id]
        if kind == ItemType.ORIGINAL and not artwork.in_stock:
            raise OutOfStock(artwork.title)

    order = Order(
        user_uid=owner_uid,
        status=OrderStatus.PENDING,
        currency=(currency or BASE_CURRENCY).upper(),
        shipping_address=dict(shipping_address),
        payment_method=method,
        customer_notes=(customer_notes or "").strip() or None,
        gift_card_amount=Decimal("0"),
    )
    total = Decimal("0")
    for artwork_id, kind, size, qty in lines:
        artwork = artworks[artwork_id]
        price = to_money(artwork.price)
        total += price * qty
        order.items.append(OrderItem(
            artwork_id=artwork.id,
            title=artwork.title,
            image_url=artwork.image_url,
            item_type=kind,
            print_size=size,
            quantity=qty,
            price_at_purchase=price,
        ))
    order.total_amount = total
    order.amount_due = total

    try:
        db.add(order)
        db.flush()

        for artwork_id, kind, _, _ in lines:
            if kind != ItemType.ORIGINAL:
                continue
            flipped = (
                db.query(Artwork)
                .filter(Artwork.id == artwork_id, Artwork.in_stock.is_(True))
                .update({Artwork.in_stock: False}, synchronize_session=False)
            )
            if flipped != 1:
                logger.warning(f"[orders] lost the race for original {artwork_id}")
                raise OutOfStock(artworks[artwork_id].title)

        cart_store.clear(db, owner_uid, commit=False)

        if gift_card_code and gift_card_code.strip():
            applied, remaining, _ = giftcards.apply(db, gift_card_code, total)
            order.gift_card_code = giftcards.normalize_code(gift_card_code)
            order.gift_card_amount = applied
            order.amount_due = total - applied

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        f"[orders] created {order.id} for {owner_uid}: {len(lines)} lines total={total} "
        f"gift_card={order.gift_card_amount} due={order.amount_due} method={method.value}"
    )

    if order.amount_due <= 0:
        # Fully covered by the gift card
        mark_paid(db, order, "gift_card")
    return order


def ensure_can_view(order: Order, user: User, admin: bool) -> None:
    if not admin and order.user_uid != user.uid:
        raise Forbidden("You do not have access to this order")


def list_user_orders(db: Session, uid: str) -> list[Order]:
    return db.query(Order).filter(Order.user_uid == uid).order_by(Order.created_at.desc()).all()


def list_orders(db: Session, status: Optional[str] = None, search: Optional[str] = None,
                page: int = 1, limit: int = 20) -> tuple[list[Order], dict]:
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 20), MAX_PAGE_SIZE))

    q = db.query(Order)
    if status:
        try:
            q = q.filter(Order.status == OrderStatus(status.strip().upper()))
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}")
    if search and search.strip():
        term = f"%{search.strip()}%"
        matching_users = select(User.uid).where(or_(User.email.ilike(term), User.display_name.ilike(term)))
        q = q.filter(or_(
            Order.id.ilike(term),
            Order.user_uid.in_(matching_users),
            Order.tracking_number.ilike(term),
            Order.transaction_id.ilike(term),
        ))

    total = q.count()
    orders = q.order_by(Order.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if total else 0,
    }
    return orders, pagination

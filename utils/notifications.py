"""
Order and gift card notifications.

Every function here runs after the owning transaction has committed and is
best-effort: failures are logged and reported as False, never raised.
"""
from typing import Optional, Tuple
from sqlalchemy.orm import Session

from core.config import logger, ADMIN_NOTIFY_EMAIL, API_PUBLIC_URL
from models.artwork import Artwork
from models.giftcard import GiftCard
from models.order import Order
from models.user import User
from utils.emailing import render_email, send_email_smtp
from utils.validation import as_utc


STATUS_HEADLINES = {
    "CONFIRM": ("Your artwork is confirmed", "The artist has confirmed your artwork and it is being prepared for shipping."),
    "SHIP": ("Your order has shipped", "Your order is on its way."),
    "DELIVER": ("Your order was delivered", "Your order has been delivered. We hope you enjoy your new artwork."),
    "CANCEL": ("Your order was cancelled", "Your order has been cancelled."),
}


def order_ref(order: Order) -> str:
    return (order.id or "")[:8].upper()


def buyer_contact(db: Session, order: Order) -> Tuple[Optional[str], str]:
    shipping = order.shipping_address or {}
    name = shipping.get("fullName") or "there"
    email = shipping.get("email")
    if not email:
        user = db.query(User).filter(User.uid == order.user_uid).first()
        email = user.email if user else None
        if user and user.display_name and name == "there":
            name = user.display_name
    return email, name


def _send(to_addr: Optional[str], subject: str, template: str, **context) -> bool:
    if not to_addr:
        logger.warning(f"[email] no recipient for '{subject}'")
        return False
    try:
        html = render_email(template, **context)
        sent = send_email_smtp(to_addr, subject, html)
        if not sent:
            logger.warning(f"[email] '{subject}' to {to_addr} was not sent")
        return sent
    except Exception as ex:
        logger.exception(f"[email] failed to send '{subject}' to {to_addr}: {ex}")
        return False


def notify_order_paid(db: Session, order: Order, source: str) -> bool:
    email, name = buyer_contact(db, order)
    data = order.to_dict()
    ref = order_ref(order)
    buyer_ok = _send(
        email,
        f"Payment received for order #{ref}",
        "order_paid.html",
        order=data,
        order_ref=ref,
        customer_name=name,
    )
    _send(
        ADMIN_NOTIFY_EMAIL,
        f"New paid order #{ref}",
        "admin_order_paid.html",
        order=data,
        order_ref=ref,
        customer_name=name,
        customer_email=email or "",
        source=source,
    )
    return buyer_ok


def notify_artist_confirmation(db: Session, order: Order) -> bool:
    """One availability request per fulfilling artist, each listing only their lines."""
    artwork_ids = [item.artwork_id for item in order.items]
    artworks = {a.id: a for a in db.query(Artwork).filter(Artwork.id.in_(artwork_ids)).all()} if artwork_ids else {}

    by_artist = {}
    for item in order.items:
        artwork = artworks.get(item.artwork_id)
        recipient = (artwork.artist_email if artwork else None) or ADMIN_NOTIFY_EMAIL
        artist_name = (artwork.artist_name if artwork else None) or "Artist"
        by_artist.setdefault(recipient, (artist_name, []))[1].append(item.to_dict())

    data = order.to_dict()
    ref = order_ref(order)
    token = order.artist_confirmation_token
    base = f"{API_PUBLIC_URL}/api/orders/artist-confirm?token={token}"
    expires = as_utc(order.artist_confirmation_expires_at)
    all_ok = True
    for recipient, (artist_name, lines) in by_artist.items():
        ok = _send(
            recipient,
            f"Please confirm availability for order #{ref}",
            "artist_confirmation.html",
            order=dict(data, items=lines),
            order_ref=ref,
            artist_name=artist_name,
            confirm_url=f"{base}&action=confirm",
            decline_url=f"{base}&action=decline",
            expires_at=expires.strftime("%d %b %Y %H:%M UTC") if expires else "",
        )
        all_ok = all_ok and ok
    return all_ok


def notify_status_change(db: Session, order: Order, event: str) -> bool:
    subject, headline = STATUS_HEADLINES.get(event, ("Your order was updated", "Your order status has changed."))
    email, name = buyer_contact(db, order)
    ref = order_ref(order)
    return _send(
        email,
        f"{subject} (#{ref})",
        "order_status.html",
        order=order.to_dict(),
        order_ref=ref,
        customer_name=name,
        headline=headline,
    )


def notify_gift_card(card: GiftCard) -> bool:
    if not card.recipient_email:
        return False
    expires = as_utc(card.expires_at)
    return _send(
        card.recipient_email,
        "You have received a gift card",
        "giftcard.html",
        card=card.to_dict(),
        recipient_name=card.recipient_name,
        expires_on=expires.strftime("%d %b %Y") if expires else "",
    )

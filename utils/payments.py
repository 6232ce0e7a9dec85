"""
Payment reconciliation: gateway webhooks and manual bank transfer confirmation
both funnel into mark_paid, the single PENDING -> PAID bundle.
"""
from typing import Mapping, Optional
from sqlalchemy.orm import Session

from core.config import logger, CLIENT_URL, PAYMENTS_PRODUCT_ID
from core.errors import InvalidTransition, InvalidState, ValidationError, Forbidden, UpstreamUnavailable
from models.order import Order, OrderStatus, PaymentMethod
from models.payments import PaymentEvent
from models.user import User
from utils import gateway
from utils.notifications import notify_order_paid
from utils.order_state import OrderEvent, get_order, transition, append_note
from utils.validation import utcnow


def mark_paid(db: Session, order: Order, source: str, transaction_id: Optional[str] = None,
              extra: Optional[dict] = None) -> Order:
    """
    PENDING -> PAID with paid_at, buyer email and internal notification.
    Raises InvalidTransition when the order is no longer PENDING.
    """
    values = {"paid_at": utcnow()}
    if transaction_id:
        values["transaction_id"] = transaction_id
    values.update(extra or {})
    transition(db, order, OrderEvent.PAYMENT_CONFIRMED, values)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info(f"[payments] order {order.id} paid via {source}")
    notify_order_paid(db, order, source)
    return order


def _record_event(db: Session, event_id: str, event_type: str, order_id: Optional[str], outcome: str, payload: dict) -> None:
    db.add(PaymentEvent(
        event_id=event_id,
        event_type=event_type or "unknown",
        order_id=order_id,
        outcome=outcome,
        payload=payload,
    ))
    db.commit()


def _order_id_from(obj: dict, payload: dict) -> Optional[str]:
    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else None
    if metadata is None and isinstance(payload.get("metadata"), dict):
        metadata = payload["metadata"]
    metadata = metadata or {}
    value = metadata.get("order_id") or metadata.get("orderId")
    return str(value).strip() if value else None


def reconcile_payment_callback(db: Session, raw_body: bytes, headers: Mapping[str, str]) -> dict:
    """
    Verify and apply one gateway delivery. Signature failures raise
    GatewayVerificationFailed; every verified delivery is acknowledged.
    """
    payload = gateway.verify_webhook(raw_body, headers)
    event_id = (headers.get("webhook-id") or headers.get("Webhook-Id") or "").strip()
    event_type = str(payload.get("type") or payload.get("event") or "").strip().lower()
    obj = gateway.event_object(payload)
    order_id = _order_id_from(obj, payload)
    logger.info(f"[payments.webhook] received {event_type or 'unknown'} id={event_id} order={order_id}")

    seen = db.query(PaymentEvent.id).filter(PaymentEvent.event_id == event_id).first() if event_id else None

    if seen:
        outcome = "replay"
    elif event_type in gateway.FAILED_EVENTS:
        logger.warning(f"[payments.webhook] payment failed for order {order_id}")
        outcome = "failed_payment"
    elif event_type not in gateway.SUCCEEDED_EVENTS:
        outcome = "ignored"
    elif not order_id:
        logger.warning(f"[payments.webhook] {event_type} without metadata.order_id; acknowledging")
        outcome = "ignored"
    else:
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order:
            logger.warning(f"[payments.webhook] unknown order {order_id}; acknowledging")
            outcome = "unknown_order"
        elif order.status != OrderStatus.PENDING:
            outcome = "replay"
        else:
            transaction_id = obj.get("payment_id") or obj.get("id")
            try:
                mark_paid(db, order, "gateway", transaction_id=str(transaction_id) if transaction_id else None)
                outcome = "paid"
            except InvalidTransition:
                outcome = "replay"

    if outcome == "replay":
        logger.info(f"[payments.webhook] replay for order {order_id}; no transition")
    _record_event(db, event_id or f"unidentified-{utcnow().timestamp()}", event_type, order_id, outcome, payload)
    return {"received": True, "outcome": outcome}


def confirm_manual_payment(db: Session, order_id: str, reference: Optional[str] = None,
                           notes: Optional[str] = None, confirmed_by: Optional[str] = None) -> Order:
    order = get_order(db, order_id)
    if order.payment_method != PaymentMethod.BANK:
        raise ValidationError("Order is not a bank transfer order")
    if order.status != OrderStatus.PENDING:
        raise InvalidState(f"Order is {order.status.value}, expected PENDING")

    label = f"Bank transfer confirmed by {confirmed_by}" if confirmed_by else "Bank transfer"
    extra = {"admin_notes": append_note(order.admin_notes, label, notes or reference)}
    try:
        return mark_paid(db, order, "bank_transfer", transaction_id=(reference or "").strip() or None, extra=extra)
    except InvalidTransition:
        raise InvalidState("Order was updated concurrently and is no longer PENDING")


async def create_payment_session(db: Session, user: User, order_id: str, currency: str = "pkr") -> dict:
    order = get_order(db, order_id)
    if order.user_uid != user.uid:
        raise Forbidden("You can only pay for your own orders")
    if order.status != OrderStatus.PENDING:
        raise InvalidState(f"Order is {order.status.value}, expected PENDING")
    if order.payment_method != PaymentMethod.CARD:
        raise ValidationError("Order is not a card payment order")
    if order.amount_due is None or order.amount_due <= 0:
        raise InvalidState("Order has nothing left to pay")

    cur = (currency or "pkr").strip().lower()
    amount_minor = gateway.to_minor_units(order.amount_due, cur)
    shipping = order.shipping_address or {}
    payload = {
        "product_cart": [{"product_id": PAYMENTS_PRODUCT_ID, "quantity": 1, "amount": amount_minor}],
        "billing_currency": cur.upper(),
        "customer": {
            "email": shipping.get("email") or user.email,
            "name": shipping.get("fullName") or user.display_name or user.email,
        },
        "metadata": {"order_id": order.id, "user_uid": user.uid},
        "return_url": f"{CLIENT_URL}/orders/{order.id}?payment=success",
    }
    data, error = await gateway.create_checkout_session(payload)
    if data is None:
        logger.error(f"[payments] checkout session for {order.id} failed: {error}")
        raise UpstreamUnavailable("Payment gateway is unavailable, please try again")

    logger.info(f"[payments] checkout session created for {order.id} ({amount_minor} {cur.upper()} minor units)")
    return {
        "orderId": order.id,
        "sessionId": data.get("session_id") or data.get("id"),
        "checkoutUrl": gateway.pick_checkout_url(data),
        "amount": amount_minor,
        "currency": cur.upper(),
    }


def get_payment_status(order: Order) -> dict:
    return {
        "orderId": order.id,
        "status": order.status.value,
        "paymentMethod": order.payment_method.value,
        "isPaid": order.paid_at is not None,
        "totalAmount": float(order.total_amount),
        "giftCardAmount": float(order.gift_card_amount or 0),
        "amountDue": float(order.amount_due),
        "currency": order.currency,
        "transactionId": order.transaction_id,
        "paidAt": order.paid_at.isoformat() if order.paid_at else None,
    }

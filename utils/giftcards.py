"""
Gift card ledger: issue, lookup, claim, debit at checkout and credit-back on cancellation.

Balance changes are conditional updates on the balance that was read, so two
checkouts spending the same card can never push it below zero.
"""
import secrets
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Tuple
from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.config import (
    logger,
    BASE_CURRENCY,
    GIFT_CARD_MIN_AMOUNT,
    GIFT_CARD_MAX_AMOUNT,
    GIFT_CARD_VALIDITY_DAYS,
    GIFT_CARD_CODE_PREFIX,
)
from core.errors import NotFound, FullyRedeemed, Expired, InvalidState, ValidationError
from models.giftcard import GiftCard
from utils.notifications import notify_gift_card
from utils.validation import utcnow, as_utc, to_money, validate_email

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_GROUPS = 3
CODE_GROUP_LEN = 4
MAX_CODE_ATTEMPTS = 10
MAX_BALANCE_ATTEMPTS = 5


def generate_code() -> str:
    groups = [
        "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_GROUP_LEN))
        for _ in range(CODE_GROUPS)
    ]
    return "-".join([GIFT_CARD_CODE_PREFIX] + groups)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def is_expired(card: GiftCard, now=None) -> bool:
    expires = as_utc(card.expires_at)
    return bool(expires and (now or utcnow()) > expires)


def _ensure_usable(card: GiftCard) -> None:
    if card.is_redeemed and Decimal(card.balance) <= 0:
        raise FullyRedeemed("Gift card has been fully redeemed")
    if is_expired(card):
        raise Expired("Gift card has expired")


def get_card(db: Session, code: str) -> GiftCard:
    card = db.query(GiftCard).filter(GiftCard.code == normalize_code(code)).first()
    if not card:
        raise NotFound("Gift card not found")
    return card


def issue(
    db: Session,
    amount,
    currency: str = BASE_CURRENCY,
    purchased_by: Optional[str] = None,
    recipient_email: Optional[str] = None,
    recipient_name: Optional[str] = None,
    message: Optional[str] = None,
) -> GiftCard:
    value = to_money(amount)
    if value < GIFT_CARD_MIN_AMOUNT or value > GIFT_CARD_MAX_AMOUNT:
        raise ValidationError(
            f"Gift card amount must be between {GIFT_CARD_MIN_AMOUNT} and {GIFT_CARD_MAX_AMOUNT}"
        )
    if recipient_email:
        ok, err = validate_email(recipient_email)
        if not ok:
            raise ValidationError(err)
        recipient_email = recipient_email.strip().lower()

    code = None
    for _ in range(MAX_CODE_ATTEMPTS):
        candidate = generate_code()
        if not db.query(GiftCard.id).filter(GiftCard.code == candidate).first():
            code = candidate
            break
    if not code:
        raise InvalidState("Could not allocate a unique gift card code")

    card = GiftCard(
        code=code,
        amount=value,
        balance=value,
        currency=(currency or BASE_CURRENCY).upper(),
        purchased_by=purchased_by,
        recipient_email=recipient_email,
        recipient_name=(recipient_name or "").strip() or None,
        message=(message or "").strip() or None,
        is_redeemed=False,
        expires_at=utcnow() + timedelta(days=GIFT_CARD_VALIDITY_DAYS),
    )
    db.add(card)
    db.commit()
    db.refresh(card)
    logger.info(f"[giftcards] issued {card.code[:8]}**** amount={value} by={purchased_by or 'anonymous'}")

    if card.recipient_email:
        notify_gift_card(card)
    return card


def redeem(db: Session, code: str, user_uid: str) -> GiftCard:
    """Claim a card for a user. Validates and stamps the claimant; the balance is untouched."""
    card = get_card(db, code)
    _ensure_usable(card)
    card.redeemed_by = user_uid
    card.redeemed_at = utcnow()
    db.commit()
    db.refresh(card)
    logger.info(f"[giftcards] {card.code[:8]}**** claimed by {user_uid}")
    return card


def apply(db: Session, code: str, order_total) -> Tuple[Decimal, Decimal, bool]:
    """
    Debit min(balance, order_total) from the card inside the caller's transaction.
    Returns (applied, remaining, is_redeemed). The caller commits or rolls back.
    """
    total = to_money(order_total)
    if total < 0:
        raise ValidationError("Order total cannot be negative")
    normalized = normalize_code(code)

    for _ in range(MAX_BALANCE_ATTEMPTS):
        card = get_card(db, normalized)
        _ensure_usable(card)
        balance = to_money(card.balance)
        applied = min(balance, total)
        remaining = balance - applied
        updated = (
            db.query(GiftCard)
            .filter(GiftCard.code == normalized, GiftCard.balance == balance)
            .update(
                {
                    GiftCard.balance: remaining,
                    GiftCard.is_redeemed: remaining == 0,
                    GiftCard.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        db.expire(card)
        if updated == 1:
            logger.info(f"[giftcards] applied {applied} from {normalized[:8]}**** remaining={remaining}")
            return applied, remaining, remaining == 0
        logger.warning(f"[giftcards] balance of {normalized[:8]}**** changed during debit; retrying")

    raise InvalidState("Gift card balance is changing too quickly; please retry")


def restore(db: Session, code: str, amount) -> Decimal:
    """Credit a debit back to the card, capped at the card's original amount. Returns the new balance."""
    credit = to_money(amount)
    normalized = normalize_code(code)
    if credit <= 0:
        return to_money(get_card(db, normalized).balance)

    for _ in range(MAX_BALANCE_ATTEMPTS):
        card = get_card(db, normalized)
        balance = to_money(card.balance)
        new_balance = min(to_money(card.amount), balance + credit)
        updated = (
            db.query(GiftCard)
            .filter(GiftCard.code == normalized, GiftCard.balance == balance)
            .update(
                {
                    GiftCard.balance: new_balance,
                    GiftCard.is_redeemed: new_balance == 0,
                    GiftCard.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        db.expire(card)
        if updated == 1:
            logger.info(f"[giftcards] restored {credit} to {normalized[:8]}**** balance={new_balance}")
            return new_balance
        logger.warning(f"[giftcards] balance of {normalized[:8]}**** changed during credit; retrying")

    raise InvalidState("Gift card balance is changing too quickly; please retry")


def list_for_user(db: Session, uid: str, email: Optional[str] = None) -> list[GiftCard]:
    clauses = [GiftCard.purchased_by == uid, GiftCard.redeemed_by == uid]
    if email:
        clauses.append(GiftCard.recipient_email == email.strip().lower())
    return db.query(GiftCard).filter(or_(*clauses)).order_by(GiftCard.created_at.desc(), GiftCard.id.desc()).all()

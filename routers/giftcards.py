from typing import Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core.auth import get_current_user, get_optional_user
from core.database import get_db
from models.user import User
from utils import giftcards
from utils.rate_limit import client_ip, enforce, giftcard_throttle, giftcard_purchase_throttle

router = APIRouter(prefix="/api/giftcards", tags=["giftcards"])


class PurchaseBody(BaseModel):
    amount: float
    currency: str = "PKR"
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = Field(default=None, max_length=255)
    message: Optional[str] = Field(default=None, max_length=1000)


class RedeemBody(BaseModel):
    code: str


@router.post("/purchase", status_code=201)
def purchase(body: PurchaseBody, request: Request, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
    enforce(giftcard_purchase_throttle, f"giftcard_purchase:{client_ip(request)}", "Too many gift card purchases. Please try again later.")
    card = giftcards.issue(
        db,
        body.amount,
        currency=body.currency,
        purchased_by=user.uid if user else None,
        recipient_email=body.recipient_email,
        recipient_name=body.recipient_name,
        message=body.message,
    )
    return {"giftCard": card.to_dict()}


@router.get("/user/my-cards")
def my_cards(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cards = giftcards.list_for_user(db, user.uid, user.email)
    return {"giftCards": [c.to_dict(is_expired=giftcards.is_expired(c)) for c in cards]}


@router.post("/redeem")
def redeem(body: RedeemBody, request: Request, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    enforce(giftcard_throttle, f"giftcard:{client_ip(request)}", "Too many gift card attempts. Please try again later.")
    card = giftcards.redeem(db, body.code, user.uid)
    return {"giftCard": card.to_dict(), "balance": float(card.balance)}


@router.get("/{code}")
def lookup(code: str, request: Request, db: Session = Depends(get_db)):
    enforce(giftcard_throttle, f"giftcard:{client_ip(request)}", "Too many gift card attempts. Please try again later.")
    card = giftcards.get_card(db, code)
    return {"giftCard": card.to_dict(is_expired=giftcards.is_expired(card))}

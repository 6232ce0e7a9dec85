from typing import Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from core.auth import get_current_user, require_admin, is_admin
from core.config import logger
from core.database import get_db
from models.user import User
from utils import payments
from utils.order_state import get_order
from utils.orders import ensure_can_view

router = APIRouter(prefix="/api/payments", tags=["payments"])


class BankTransferBody(BaseModel):
    order_id: str
    reference: Optional[str] = None
    notes: Optional[str] = None


class SessionBody(BaseModel):
    order_id: str
    currency: str = "pkr"


@router.post("/webhook")
async def payment_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Gateway callback. Signed with Standard Webhooks headers
    (webhook-id, webhook-timestamp, webhook-signature).
    """
    raw_body = await request.body()
    logger.info("[payments.webhook] received webhook")
    return payments.reconcile_payment_callback(db, raw_body, request.headers)


@router.post("/confirm-bank-transfer")
def confirm_bank_transfer(body: BankTransferBody, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    order = payments.confirm_manual_payment(db, body.order_id, body.reference, body.notes, confirmed_by=admin.email)
    return {"order": order.to_dict(include_admin=True)}


@router.post("/create-session")
async def create_session(body: SessionBody, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return await payments.create_payment_session(db, user, body.order_id, body.currency)


@router.get("/{order_id}")
def payment_status(order_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = get_order(db, order_id)
    ensure_can_view(order, user, is_admin(user))
    return payments.get_payment_status(order)

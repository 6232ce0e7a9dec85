"""
Payment gateway audit log
- payment_events: one row per verified webhook delivery, replays included
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from core.database import Base


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(50), nullable=False, default="gateway")
    # webhook-id header; repeated on provider retries
    event_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    order_id = Column(String(36), nullable=True, index=True)
    # paid, replay, ignored, failed_payment, unknown_order
    outcome = Column(String(32), nullable=False)
    payload = Column(JSON, nullable=False, default={})
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

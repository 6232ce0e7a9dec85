"""
Gift cards: prepaid balances redeemable against orders
"""
from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, Numeric
from sqlalchemy.sql import func
from core.database import Base


class GiftCard(Base):
    __tablename__ = "gift_cards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(32), unique=True, index=True, nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    # 0 <= balance <= amount
    balance = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), nullable=False, default="PKR")

    purchased_by = Column(String(128), nullable=True, index=True)
    recipient_email = Column(String(255), nullable=True, index=True)
    recipient_name = Column(String(255), nullable=True)
    message = Column(Text, nullable=True)

    redeemed_by = Column(String(128), nullable=True, index=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    is_redeemed = Column(Boolean, nullable=False, default=False)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self, is_expired: bool = False):
        return {
            "code": self.code,
            "amount": float(self.amount),
            "balance": float(self.balance),
            "currency": self.currency,
            "recipientEmail": self.recipient_email,
            "recipientName": self.recipient_name,
            "message": self.message,
            "isRedeemed": bool(self.is_redeemed),
            "redeemedAt": self.redeemed_at.isoformat() if self.redeemed_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "isExpired": is_expired,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

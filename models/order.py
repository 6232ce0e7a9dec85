"""
Order models
- orders: one purchase with its immutable price snapshot and lifecycle stamps
- order_items: per-line snapshot (title, type, size, quantity, price at purchase)
"""
import enum
import uuid
from decimal import Decimal
from sqlalchemy import Column, String, Text, DateTime, Integer, Numeric, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class ItemType(str, enum.Enum):
    ORIGINAL = "ORIGINAL"
    PRINT = "PRINT"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    BANK = "bank"


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return float(value) if value is not None else 0.0


def new_order_id() -> str:
    return str(uuid.uuid4())


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_order_id, index=True)
    user_uid = Column(String(128), nullable=False, index=True)
    status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True)

    # Totals in the base currency, fixed at creation
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), nullable=False, default="PKR")
    gift_card_code = Column(String(32), nullable=True, index=True)
    gift_card_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    amount_due = Column(Numeric(12, 2), nullable=False)

    shipping_address = Column(JSON, nullable=False, default={})
    payment_method = Column(SQLEnum(PaymentMethod), nullable=False, default=PaymentMethod.CARD)
    transaction_id = Column(String(255), nullable=True)

    customer_notes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    tracking_number = Column(String(128), nullable=True)
    carrier = Column(String(100), nullable=True)

    # Artist availability link
    artist_confirmation_token = Column(String(64), nullable=True, unique=True, index=True)
    artist_confirmation_expires_at = Column(DateTime(timezone=True), nullable=True)

    admin_confirmed_by = Column(String(128), nullable=True)
    shipped_by = Column(String(128), nullable=True)

    # One stamp per reached state
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    artist_notified_at = Column(DateTime(timezone=True), nullable=True)
    artist_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    admin_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")

    def to_dict(self, include_admin: bool = False):
        """Convert to dict for API responses"""
        data = {
            "id": self.id,
            "userUid": self.user_uid,
            "status": self.status.value if self.status else None,
            "totalAmount": _money(self.total_amount),
            "giftCardCode": self.gift_card_code,
            "giftCardAmount": _money(self.gift_card_amount),
            "amountDue": _money(self.amount_due),
            "currency": self.currency,
            "shippingAddress": self.shipping_address or {},
            "paymentMethod": self.payment_method.value if self.payment_method else None,
            "transactionId": self.transaction_id,
            "customerNotes": self.customer_notes,
            "cancellationReason": self.cancellation_reason,
            "trackingNumber": self.tracking_number,
            "carrier": self.carrier,
            "items": [item.to_dict() for item in self.items],
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "paidAt": _iso(self.paid_at),
            "artistNotifiedAt": _iso(self.artist_notified_at),
            "artistConfirmedAt": _iso(self.artist_confirmed_at),
            "adminConfirmedAt": _iso(self.admin_confirmed_at),
            "shippedAt": _iso(self.shipped_at),
            "deliveredAt": _iso(self.delivered_at),
            "cancelledAt": _iso(self.cancelled_at),
        }
        if include_admin:
            data["adminNotes"] = self.admin_notes
            data["adminConfirmedBy"] = self.admin_confirmed_by
            data["shippedBy"] = self.shipped_by
        return data


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # Display reference only; never joined for pricing
    artwork_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    image_url = Column(Text, nullable=True)
    item_type = Column(SQLEnum(ItemType), nullable=False)
    print_size = Column(String(50), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price_at_purchase = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.price_at_purchase) * self.quantity

    def to_dict(self):
        return {
            "id": self.id,
            "artworkId": self.artwork_id,
            "title": self.title,
            "imageUrl": self.image_url,
            "itemType": self.item_type.value if self.item_type else None,
            "printSize": self.print_size,
            "quantity": self.quantity,
            "priceAtPurchase": _money(self.price_at_purchase),
            "lineTotal": _money(self.line_total),
        }

"""
Cart line items keyed by owner (user uid or guest:<session>)
"""
from sqlalchemy import Column, String, DateTime, Integer, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.sql import func
from core.database import Base
from models.order import ItemType


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("owner_id", "artwork_id", "item_type", "print_size", name="uq_cart_line"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(160), nullable=False, index=True)
    artwork_id = Column(String(64), nullable=False, index=True)
    item_type = Column(SQLEnum(ItemType), nullable=False, default=ItemType.ORIGINAL)
    # Null for originals
    print_size = Column(String(50), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class GuestCartMerge(Base):
    """Records a guest line list already folded into an owner's cart. Cleared when that cart changes."""
    __tablename__ = "guest_cart_merges"
    __table_args__ = (
        UniqueConstraint("owner_id", "merge_digest", name="uq_guest_merge"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(160), nullable=False, index=True)
    merge_digest = Column(String(64), nullable=False)
    merged_lines = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

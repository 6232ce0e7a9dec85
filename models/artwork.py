"""
Artwork catalog rows consulted by the cart and the order materializer.
Originals are one-of-a-kind and gated by in_stock; prints are never gated.
"""
from sqlalchemy import Column, String, Text, DateTime, Boolean, Numeric
from sqlalchemy.sql import func
from core.database import Base


class Artwork(Base):
    __tablename__ = "artworks"

    id = Column(String(64), primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    image_url = Column(Text, nullable=True)

    # Price in the base currency (PKR)
    price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), nullable=False, default="PKR")

    # Only meaningful for the ORIGINAL; flipped by checkout and cancellation
    in_stock = Column(Boolean, nullable=False, default=True)

    # Fulfilling party
    artist_uid = Column(String(128), nullable=True, index=True)
    artist_name = Column(String(255), nullable=True)
    artist_email = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "imageUrl": self.image_url,
            "price": float(self.price) if self.price is not None else 0.0,
            "currency": self.currency,
            "inStock": bool(self.in_stock),
            "artist": {
                "uid": self.artist_uid,
                "name": self.artist_name,
            },
        }

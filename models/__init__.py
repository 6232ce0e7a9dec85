from models.user import User
from models.artwork import Artwork
from models.order import Order, OrderItem, OrderStatus, ItemType, PaymentMethod
from models.cart import CartItem, GuestCartMerge
from models.giftcard import GiftCard
from models.payments import PaymentEvent

__all__ = [
    "User",
    "Artwork",
    "Order",
    "OrderItem",
    "OrderStatus",
    "ItemType",
    "PaymentMethod",
    "CartItem",
    "GuestCartMerge",
    "GiftCard",
    "PaymentEvent",
]

"""
Typed errors raised by the order, cart, payment and gift card operations.
Each maps to a stable error code and HTTP status in main.py.
"""
from typing import Optional


class MarketError(Exception):
    code = "error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class NotFound(MarketError):
    code = "not_found"
    status_code = 404


class OutOfStock(MarketError):
    code = "out_of_stock"
    status_code = 409

    def __init__(self, artwork_title: str):
        super().__init__(f"Artwork is out of stock: {artwork_title}")
        self.artwork_title = artwork_title

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, "artwork": self.artwork_title}


class InvalidTransition(MarketError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, from_status, event, message: Optional[str] = None):
        self.from_status = getattr(from_status, "value", from_status)
        self.event = getattr(event, "value", event)
        super().__init__(message or f"Cannot apply '{self.event}' to an order in status {self.from_status}")

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, "from": self.from_status, "event": self.event}


class InvalidState(MarketError):
    code = "invalid_state"
    status_code = 409


class Forbidden(MarketError):
    code = "forbidden"
    status_code = 403


class Unauthorized(MarketError):
    code = "unauthorized"
    status_code = 401


class Expired(MarketError):
    code = "expired"
    status_code = 410


class FullyRedeemed(MarketError):
    code = "fully_redeemed"
    status_code = 409


class ValidationError(MarketError):
    code = "validation_error"
    status_code = 400


class GatewayVerificationFailed(MarketError):
    code = "invalid_signature"
    status_code = 401


class UpstreamUnavailable(MarketError):
    code = "upstream_unavailable"
    status_code = 503


class RateLimited(MarketError):
    code = "rate_limited"
    status_code = 429

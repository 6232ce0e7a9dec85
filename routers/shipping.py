from typing import List, Optional
from fastapi import APIRouter
from pydantic import BaseModel, Field

from utils.shipping import get_shipping_rates

router = APIRouter(prefix="/api/shipping", tags=["shipping"])


class RatesBody(BaseModel):
    country: Optional[str] = Field(default=None, max_length=100)
    # Accepted for clients that send the cart along; rates do not depend on it yet
    items: List[dict] = Field(default_factory=list)


@router.post("/rates")
def shipping_rates(body: RatesBody):
    """Public: the cart shows rates before the buyer signs in."""
    return {"rates": get_shipping_rates(body.country)}

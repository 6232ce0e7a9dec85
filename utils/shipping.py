"""
Shipping rate quotes shown in the cart before checkout.

Rates are flat PKR amounts per destination zone. They are a quote only and are
not added to order totals.
"""
from typing import Optional

from core.config import logger, BASE_CURRENCY, DOMESTIC_COUNTRY

DOMESTIC_RATES = [
    {"id": "domestic_standard", "provider": "TCS/Leopard", "service": "Standard Shipping", "price": 500, "estimatedDays": "3-5 days"},
    {"id": "domestic_express", "provider": "TCS/Leopard", "service": "Express Shipping", "price": 1200, "estimatedDays": "1-2 days"},
]

INTERNATIONAL_RATES = [
    {"id": "intl_standard", "provider": "DHL", "service": "Standard International", "price": 8500, "estimatedDays": "10-15 days"},
    {"id": "intl_express", "provider": "DHL", "service": "Express International", "price": 15000, "estimatedDays": "5-7 days"},
]


def is_domestic(country: Optional[str]) -> bool:
    # No country yet means the buyer has not filled the address; quote domestic
    value = (country or "").strip().lower()
    return not value or value == DOMESTIC_COUNTRY


def get_shipping_rates(country: Optional[str]) -> list[dict]:
    table = DOMESTIC_RATES if is_domestic(country) else INTERNATIONAL_RATES
    logger.info(f"[shipping] quoted {'domestic' if table is DOMESTIC_RATES else 'international'} rates for {country or 'unknown country'}")
    return [dict(rate, currency=BASE_CURRENCY) for rate in table]

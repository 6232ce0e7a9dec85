import os
import logging
from decimal import Decimal
from dotenv import load_dotenv

# Load .env from project root
try:
    load_dotenv(dotenv_path=os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".env")))
except Exception:
    try:
        load_dotenv()
    except Exception:
        pass

APP_NAME = os.getenv("APP_NAME", "Muraqqa Art Gallery")
CLIENT_URL = (os.getenv("CLIENT_URL", "http://localhost:5173") or "").strip().rstrip("/")
API_PUBLIC_URL = (os.getenv("API_PUBLIC_URL", "http://localhost:8000") or "").strip().rstrip("/")
REDIS_URL = (os.getenv("REDIS_URL") or "").strip()

# Payments gateway (Standard Webhooks compatible provider)
PAYMENTS_API_BASE = os.getenv("PAYMENTS_API_BASE", "https://test.dodopayments.com").rstrip("/")
PAYMENTS_CHECKOUT_PATH = os.getenv("PAYMENTS_CHECKOUT_PATH", "/v1/checkout-sessions").strip()
if not PAYMENTS_CHECKOUT_PATH.startswith("/"):
    PAYMENTS_CHECKOUT_PATH = "/" + PAYMENTS_CHECKOUT_PATH
PAYMENTS_API_KEY = os.getenv("PAYMENTS_API_KEY") or os.getenv("DODO_PAYMENTS_API_KEY", "")
PAYMENTS_PRODUCT_ID = (os.getenv("PAYMENTS_PRODUCT_ID") or "").strip()
PAYMENTS_WEBHOOK_SECRET = (
    os.getenv("PAYMENTS_WEBHOOK_SECRET")
    or os.getenv("DODO_PAYMENTS_WEBHOOK_KEY")
    or ""
).strip()

# Prices are stored in the base currency; gateway charges are converted with these multipliers
BASE_CURRENCY = os.getenv("BASE_CURRENCY", "PKR").strip().upper()
CURRENCY_MULTIPLIERS = {
    "pkr": Decimal("1"),
    "usd": Decimal("0.0036"),
    "gbp": Decimal("0.0028"),
}

# Gift cards
GIFT_CARD_MIN_AMOUNT = Decimal(os.getenv("GIFT_CARD_MIN_AMOUNT", "500"))
GIFT_CARD_MAX_AMOUNT = Decimal(os.getenv("GIFT_CARD_MAX_AMOUNT", "1000000"))
GIFT_CARD_VALIDITY_DAYS = int(os.getenv("GIFT_CARD_VALIDITY_DAYS", "365"))
GIFT_CARD_CODE_PREFIX = os.getenv("GIFT_CARD_CODE_PREFIX", "MRQ")

# Shipping quotes
DOMESTIC_COUNTRY = os.getenv("DOMESTIC_COUNTRY", "pakistan").strip().lower()

# Artist availability links
ARTIST_CONFIRMATION_TTL_HOURS = int(os.getenv("ARTIST_CONFIRMATION_TTL_HOURS", "48"))

MAIL_FROM = os.getenv("MAIL_FROM", "Muraqqa <no-reply@muraqqa.art>")
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")

ADMIN_EMAILS = [e.strip().lower() for e in (os.getenv("ADMIN_EMAILS", "").split(",") if os.getenv("ADMIN_EMAILS") else []) if e.strip()]
# Internal inbox for new-order and artist-confirmation notices
ADMIN_NOTIFY_EMAIL = (os.getenv("ADMIN_NOTIFY_EMAIL") or SMTP_USER or "admin@muraqqa.art").strip()

# Logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
logger = logging.getLogger("muraqqa")

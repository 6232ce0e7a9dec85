import os
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx
from standardwebhooks import Webhook, WebhookVerificationError

from core.config import (
    logger,
    PAYMENTS_API_BASE,
    PAYMENTS_CHECKOUT_PATH,
    PAYMENTS_API_KEY,
    PAYMENTS_WEBHOOK_SECRET,
    CURRENCY_MULTIPLIERS,
)
from core.errors import GatewayVerificationFailed, ValidationError


SUCCEEDED_EVENTS = {"payment.succeeded", "payment_intent.succeeded"}
FAILED_EVENTS = {"payment.failed", "payment_intent.payment_failed"}


def to_minor_units(amount, currency: str) -> int:
    """Convert a base-currency (PKR) amount into the gateway currency's minor units."""
    cur = (currency or "").strip().lower()
    multiplier = CURRENCY_MULTIPLIERS.get(cur)
    if multiplier is None:
        raise ValidationError(f"Unsupported currency: {currency}")
    converted = Decimal(str(amount)) * multiplier * 100
    return int(converted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_headers_list() -> list[dict]:
    api_key = (PAYMENTS_API_KEY or "").strip()
    headers_list = [
        {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "MuraqqaBackend/1.0",
        },
        {
            "X-API-KEY": api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "MuraqqaBackend/1.0",
        },
    ]
    env_hdr = (os.getenv("PAYMENTS_ENVIRONMENT") or "").strip().strip('"')
    if not env_hdr and ("test." in PAYMENTS_API_BASE.lower() or "sandbox" in PAYMENTS_API_BASE.lower()):
        env_hdr = "sandbox"
    if env_hdr:
        for h in headers_list:
            h["Dodo-Environment"] = env_hdr
    return headers_list


def build_endpoints() -> list[str]:
    base = PAYMENTS_API_BASE.rstrip("/")
    endpoints = [f"{base}{PAYMENTS_CHECKOUT_PATH}"]
    if PAYMENTS_CHECKOUT_PATH != "/v1/checkout-sessions":
        endpoints.append(f"{base}/v1/checkout-sessions")
    return endpoints


def pick_checkout_url(data: Dict[str, Any]) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    link = data.get("checkout_url") or data.get("session_url") or data.get("url") or data.get("payment_link")
    if link:
        return str(link)
    obj = data.get("data")
    if isinstance(obj, dict):
        inner = obj.get("checkout_url") or obj.get("session_url") or obj.get("url") or ""
        return str(inner) or None
    return None


async def create_checkout_session(payload: dict) -> Tuple[Optional[dict], Optional[dict]]:
    """Ask the gateway for a hosted checkout session.
    Returns (data, error_details). If data is None, error_details contains the last failure.
    """
    last_error = None
    async with httpx.AsyncClient(timeout=30.0) as client:
        for url in build_endpoints():
            for headers in build_headers_list():
                try:
                    logger.info(f"[gateway] creating checkout session via {url}")
                    resp = await client.post(url, headers=headers, json=payload)
                    if resp.status_code in (200, 201):
                        try:
                            return resp.json(), None
                        except ValueError:
                            return {}, None
                    last_error = {
                        "status": resp.status_code,
                        "endpoint": url,
                        "body": (resp.text or "")[:2000],
                    }
                    # Auth failures with one header style may pass with the other
                    if resp.status_code in (401, 403, 404):
                        continue
                    break
                except httpx.HTTPError as ex:
                    last_error = {"exception": str(ex), "endpoint": url}
    if last_error:
        logger.warning(f"[gateway] checkout session creation failed: {last_error}")
    return None, last_error


def _header(headers: Mapping[str, str], name: str) -> str:
    return headers.get(name) or headers.get(name.title()) or ""


def verify_webhook(raw_body: bytes, headers: Mapping[str, str]) -> dict:
    """Verify a Standard Webhooks signature and return the parsed payload."""
    secret = PAYMENTS_WEBHOOK_SECRET
    if not secret:
        logger.error("[payments.webhook] PAYMENTS_WEBHOOK_SECRET is not configured")
        raise GatewayVerificationFailed("Webhook secret is not configured")
    wh_headers = {
        "webhook-id": _header(headers, "webhook-id"),
        "webhook-timestamp": _header(headers, "webhook-timestamp"),
        "webhook-signature": _header(headers, "webhook-signature"),
    }
    try:
        payload = Webhook(secret).verify(data=raw_body, headers=wh_headers)
    except (WebhookVerificationError, ValueError) as ex:
        logger.warning(f"[payments.webhook] signature verification failed: {ex}")
        raise GatewayVerificationFailed("Invalid webhook signature")
    if not isinstance(payload, dict):
        raise GatewayVerificationFailed("Webhook payload must be a JSON object")
    return payload


def event_object(payload: dict) -> dict:
    """Normalize the provider shapes { data: { object: {...} } } and { data: {...} }."""
    data_node = payload.get("data")
    if isinstance(data_node, dict) and isinstance(data_node.get("object"), dict):
        return data_node["object"]
    if isinstance(data_node, dict):
        return data_node
    if isinstance(payload.get("object"), dict):
        return payload["object"]
    return payload

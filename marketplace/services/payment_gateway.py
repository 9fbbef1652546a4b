"""
Payment Gateway Client - Midtrans Snap

Wraps outbound calls to the hosted-checkout gateway. Every call uses a
bounded timeout and a small number of retries with exponential backoff;
when those are exhausted the caller gets ``GatewayUnavailable``. The
server key is only ever sent as the Basic-auth username and is never
logged.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

import requests
from requests.auth import HTTPBasicAuth

from marketplace.config import Config
from marketplace.errors import GatewayUnavailable
from marketplace.models import OrderStatus
from marketplace.observability import increment_counter, observe_latency

ITEM_NAME_MAX_LENGTH = 50
CUSTOMER_NAME_MAX_LENGTH = 20


def map_transaction_status(transaction_status: Optional[str], fraud_status: Optional[str] = None) -> Optional[OrderStatus]:
    """Translate gateway vocabulary into an order status.

    Returns ``None`` when the notification should not change the order
    (``pending`` or an unrecognised status).
    """
    transaction_status = (transaction_status or "").lower()
    fraud_status = (fraud_status or "").lower()

    if transaction_status == "capture":
        if fraud_status == "challenge":
            return OrderStatus.CHALLENGE
        if fraud_status in ("accept", ""):
            return OrderStatus.SUCCESS
        return OrderStatus.FAILED
    if transaction_status == "settlement":
        return OrderStatus.SUCCESS
    if transaction_status in ("deny", "cancel", "failure"):
        return OrderStatus.FAILED
    if transaction_status == "expire":
        return OrderStatus.EXPIRED
    return None


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


class MidtransGateway:
    SANDBOX_SNAP_URL = "https://app.sandbox.midtrans.com"
    PRODUCTION_SNAP_URL = "https://app.midtrans.com"
    SANDBOX_API_URL = "https://api.sandbox.midtrans.com"
    PRODUCTION_API_URL = "https://api.midtrans.com"

    # Retry only what can plausibly succeed on a second attempt
    RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

    def __init__(
        self,
        server_key: Optional[str] = None,
        client_key: Optional[str] = None,
        is_production: Optional[bool] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.server_key = Config.MIDTRANS_SERVER_KEY if server_key is None else server_key
        self.client_key = Config.MIDTRANS_CLIENT_KEY if client_key is None else client_key
        self.is_production = Config.MIDTRANS_IS_PRODUCTION if is_production is None else is_production
        self.timeout = timeout or Config.GATEWAY_TIMEOUT_SECONDS
        self.max_retries = Config.GATEWAY_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = Config.GATEWAY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.session = session or requests.Session()
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

    @property
    def configured(self) -> bool:
        return bool(self.server_key and self.client_key)

    @property
    def environment(self) -> str:
        return "production" if self.is_production else "sandbox"

    @property
    def snap_url(self) -> str:
        return self.PRODUCTION_SNAP_URL if self.is_production else self.SANDBOX_SNAP_URL

    @property
    def api_url(self) -> str:
        return self.PRODUCTION_API_URL if self.is_production else self.SANDBOX_API_URL

    def public_config(self) -> Dict[str, str]:
        """Browser-safe settings. The server key is deliberately absent."""
        return {"clientKey": self.client_key or "", "environment": self.environment}

    # ------------------------------------------------------------------
    # Outbound calls
    # ------------------------------------------------------------------
    def create_transaction(self, payload: Mapping[str, Any]) -> Dict[str, str]:
        """Open a Snap payment session; returns ``{"token", "redirect_url"}``."""
        self._ensure_configured()
        body = self._request("POST", f"{self.snap_url}/snap/v1/transactions", json=payload, operation="create")
        token = body.get("token")
        if not token:
            self.logger.error("Gateway response did not include a session token")
            raise GatewayUnavailable("Payment gateway returned an incomplete response.")
        return {"token": token, "redirect_url": body.get("redirect_url", "")}

    def get_transaction_status(self, transaction_id: str) -> Dict[str, Any]:
        self._ensure_configured()
        return self._request("GET", f"{self.api_url}/v2/{transaction_id}/status", operation="status")

    def verify_signature(self, notification: Mapping[str, Any]) -> bool:
        if not self.server_key:
            return False
        received = str(notification.get("signature_key") or "")
        if not received:
            return False
        expected = compute_signature(
            str(notification.get("order_id", "")),
            str(notification.get("status_code", "")),
            str(notification.get("gross_amount", "")),
            self.server_key,
        )
        return hmac.compare_digest(expected, received)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _ensure_configured(self) -> None:
        if not self.configured:
            raise GatewayUnavailable("Payment gateway is not configured.")

    def _request(self, method: str, url: str, json: Optional[Mapping[str, Any]] = None, operation: str = "call") -> Dict[str, Any]:
        attempts = self.max_retries + 1
        last_reason = "unknown"
        for attempt in range(1, attempts + 1):
            started = time.perf_counter()
            try:
                response = self.session.request(
                    method,
                    url,
                    json=json,
                    auth=HTTPBasicAuth(self.server_key, ""),
                    headers={"Accept": "application/json", "Content-Type": "application/json"},
                    timeout=self.timeout,
                )
            except (requests.Timeout, requests.ConnectionError) as exc:
                last_reason = exc.__class__.__name__
                response = None
            finally:
                observe_latency("gateway_latency_seconds", time.perf_counter() - started, labels={"operation": operation})

            if response is not None:
                if response.status_code < 400:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise GatewayUnavailable("Payment gateway returned an unreadable response.") from exc
                last_reason = f"HTTP {response.status_code}"
                if response.status_code not in self.RETRYABLE_STATUS_CODES:
                    self.logger.error(
                        "Gateway rejected request",
                        extra={"operation": operation, "status_code": response.status_code},
                    )
                    increment_counter("gateway_failures_total", labels={"operation": operation})
                    raise GatewayUnavailable(f"Payment gateway rejected the request ({last_reason}).")

            if attempt < attempts:
                increment_counter("gateway_retries_total", labels={"operation": operation})
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                self.logger.warning(
                    "Gateway call failed; retrying",
                    extra={"operation": operation, "attempt": attempt, "reason": last_reason, "delay": delay},
                )
                self._sleep(delay)

        increment_counter("gateway_failures_total", labels={"operation": operation})
        self.logger.error("Gateway unavailable after retries", extra={"operation": operation, "reason": last_reason})
        raise GatewayUnavailable(f"Payment gateway is unavailable ({last_reason}).")


def build_snap_payload(
    transaction_id: str,
    gross_amount: int,
    items,
    customer: Mapping[str, Optional[str]],
    frontend_url: Optional[str] = None,
    expiry_minutes: Optional[int] = None,
) -> Dict[str, Any]:
    """Assemble the Snap transaction body from normalized line items."""
    frontend_url = (frontend_url or Config.FRONTEND_URL).rstrip("/")
    name = (customer.get("full_name") or customer.get("username") or "Customer")[:CUSTOMER_NAME_MAX_LENGTH]
    return {
        "transaction_details": {"order_id": transaction_id, "gross_amount": int(gross_amount)},
        "item_details": [
            {
                "id": str(item["product_id"]),
                "price": int(item["unit_price"]),
                "quantity": int(item["quantity"]),
                "name": str(item["product_name"])[:ITEM_NAME_MAX_LENGTH],
            }
            for item in items
        ],
        "customer_details": {
            "first_name": name,
            "email": customer.get("email") or "",
            "phone": customer.get("phone") or "",
        },
        "callbacks": {
            "finish": f"{frontend_url}/payment/success",
            "error": f"{frontend_url}/payment/error",
            "pending": f"{frontend_url}/payment/pending",
        },
        "credit_card": {"secure": True},
        "expiry": {"duration": int(expiry_minutes or Config.PAYMENT_EXPIRY_MINUTES), "unit": "minutes"},
    }

"""Minimal Razorpay API client for booking payments and refunds."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from threading import Lock
from typing import Any, Dict, List, Optional, cast
from uuid import uuid4

import httpx
from pydantic import SecretStr

from .payment_gateway import PaymentGatewayError

logger = logging.getLogger(__name__)


def compute_payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    """HMAC-SHA256 hex digest over ``order_id|payment_id``."""
    payload = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_payment_signature(
    order_id: str, payment_id: str, signature: str, secret: str
) -> bool:
    """Constant-time check of a client-submitted checkout signature."""
    if not (order_id and payment_id and signature and secret):
        return False
    expected = compute_payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature)


class RazorpayClient:
    """Thin client for the Razorpay REST API."""

    def __init__(
        self,
        *,
        key_id: str,
        key_secret: str | SecretStr,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 8.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret_value = (
            key_secret.get_secret_value() if isinstance(key_secret, SecretStr) else key_secret
        )
        if not key_id or not secret_value:
            raise ValueError("Razorpay key id and secret must be provided")

        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        # Razorpay uses HTTP Basic auth with the key id as username and the secret as password
        self._auth = httpx.BasicAuth(key_id, secret_value)

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create an order for ``amount`` minor units."""

        if amount <= 0:
            raise ValueError("amount must be positive")
        body: Dict[str, Any] = {"amount": amount, "currency": currency, "receipt": receipt}
        if notes:
            body["notes"] = notes
        return self.request("POST", "/orders", json_body=body)

    def fetch_order(self, order_id: str) -> Dict[str, Any]:
        if not order_id:
            raise ValueError("order_id must be provided")
        return self.request("GET", f"/orders/{order_id}")

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        if not payment_id:
            raise ValueError("payment_id must be provided")
        return self.request("GET", f"/payments/{payment_id}")

    def refund_payment(
        self,
        payment_id: str,
        *,
        amount: int,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        if not payment_id:
            raise ValueError("payment_id must be provided")
        body: Dict[str, Any] = {"amount": amount}
        if notes:
            body["notes"] = notes
        return self.request("POST", f"/payments/{payment_id}/refund", json_body=body)

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw Razorpay API request and return the parsed JSON payload."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            auth=self._auth,
            headers={"Accept": "application/json"},
        ) as client:
            request = client.build_request(method, url, json=json_body, params=params)
            logger.debug(
                "RazorpayClient request",
                extra={"evt": "razorpay_request", "method": request.method, "path": path},
            )
            try:
                response = client.send(request)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                error_payload: Any | None = None
                error_code: str | None = None
                try:
                    error_payload = exc.response.json()
                    if isinstance(error_payload, dict):
                        error_info = error_payload.get("error")
                        if isinstance(error_info, dict):
                            error_code = error_info.get("code")
                except json.JSONDecodeError:
                    error_payload = exc.response.text

                logger.error(
                    "Razorpay API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                raise PaymentGatewayError(
                    message=f"Razorpay API responded with status {status}",
                    status_code=status,
                    error_code=error_code,
                    error_body=error_payload,
                ) from exc
            except httpx.TimeoutException as exc:
                logger.error("Razorpay request timed out for %s %s", method, path)
                raise PaymentGatewayError("Razorpay API timed out") from exc
            except httpx.RequestError as exc:
                logger.error("Razorpay request failure for %s %s: %s", method, path, str(exc))
                raise PaymentGatewayError("Failed to reach Razorpay API") from exc

        try:
            return cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from Razorpay for %s %s: %s", method, path, response.text)
            raise PaymentGatewayError("Received malformed JSON from Razorpay") from exc


class FakeRazorpayClient(RazorpayClient):
    """
    In-memory stand-in for Razorpay used outside production.

    Orders and payments live in dictionaries. ``fail_next`` makes the next N
    calls of one operation raise PaymentGatewayError, and ``calls`` records
    every operation in order.
    """

    def __init__(self, *, key_secret: str = "fake-razorpay-secret") -> None:
        super().__init__(key_id="rzp_test_fake", key_secret=key_secret)
        self._secret = key_secret
        self._logger = logging.getLogger(self.__class__.__name__)
        self._lock = Lock()
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.payments: Dict[str, Dict[str, Any]] = {}
        self.refunds: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self._failures: Dict[str, int] = {}

    # Test controls

    def fail_next(self, operation: str, times: int = 1) -> None:
        with self._lock:
            self._failures[operation] = self._failures.get(operation, 0) + times

    def call_count(self, operation: str) -> int:
        with self._lock:
            return self.calls.count(operation)

    def _enter(self, operation: str) -> None:
        with self._lock:
            self.calls.append(operation)
            remaining = self._failures.get(operation, 0)
            if remaining:
                self._failures[operation] = remaining - 1
                raise PaymentGatewayError(f"Simulated {operation} failure", status_code=503)

    def simulate_payment(
        self,
        order_id: str,
        *,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        capture: bool = True,
    ) -> Dict[str, Any]:
        """Record a customer payment against an order and return payment id and signature."""
        with self._lock:
            order = self.orders[order_id]
            payment_id = f"pay_fake_{uuid4().hex[:14]}"
            self.payments[payment_id] = {
                "id": payment_id,
                "entity": "payment",
                "order_id": order_id,
                "amount": order["amount"] if amount is None else amount,
                "currency": order["currency"] if currency is None else currency,
                "status": "captured" if capture else "authorized",
            }
            order["status"] = "paid" if capture else "attempted"
            order["amount_paid"] = order["amount"] if capture else 0
        return {
            "payment_id": payment_id,
            "signature": compute_payment_signature(order_id, payment_id, self._secret),
        }

    def expire_order(self, order_id: str) -> None:
        with self._lock:
            self.orders[order_id]["status"] = "expired"

    # Gateway operations

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        self._enter("create_order")
        order_id = f"order_fake_{uuid4().hex[:14]}"
        order = {
            "id": order_id,
            "entity": "order",
            "amount": amount,
            "amount_paid": 0,
            "currency": currency,
            "receipt": receipt,
            "status": "created",
            "notes": dict(notes or {}),
        }
        with self._lock:
            self.orders[order_id] = order
        self._logger.debug("Fake order created", extra={"order_id": order_id, "amount": amount})
        return dict(order)

    def fetch_order(self, order_id: str) -> Dict[str, Any]:
        self._enter("fetch_order")
        with self._lock:
            order = self.orders.get(order_id)
        if order is None:
            raise PaymentGatewayError(f"Order {order_id} not found", status_code=404)
        return dict(order)

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        self._enter("fetch_payment")
        with self._lock:
            payment = self.payments.get(payment_id)
        if payment is None:
            raise PaymentGatewayError(f"Payment {payment_id} not found", status_code=400)
        return dict(payment)

    def refund_payment(
        self,
        payment_id: str,
        *,
        amount: int,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        self._enter("refund_payment")
        refund_id = f"rfnd_fake_{uuid4().hex[:14]}"
        refund = {
            "id": refund_id,
            "entity": "refund",
            "payment_id": payment_id,
            "amount": amount,
            "status": "processed",
            "notes": dict(notes or {}),
        }
        with self._lock:
            self.refunds[refund_id] = refund
        self._logger.debug("Fake refund created", extra={"refund_id": refund_id})
        return dict(refund)


def build_payment_gateway() -> RazorpayClient:
    """Return the gateway configured in settings."""
    from ..core.config import settings

    if settings.razorpay_fake:
        if settings.is_production:
            raise RuntimeError("The fake payment gateway cannot be used in production")
        return FakeRazorpayClient(key_secret=settings.payment_signature_secret or "fake-razorpay-secret")
    return RazorpayClient(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        base_url=settings.razorpay_base_url,
        timeout=settings.gateway_timeout_seconds,
    )

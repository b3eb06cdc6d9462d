"""
Card processor client.

Talks to the processor's REST API (Stripe wire format: form-encoded requests,
JSON responses, bearer secret key) with a shared ``httpx.Client``. Checkout
sessions are opened with manual capture, so funds are only held until
``capture_payment_intent`` is called.
"""

import logging
from typing import Any, Optional

import httpx

from mobipet.core import config

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised when the processor rejects a request or cannot be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def encode_form(data: dict, prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts/lists into processor-style ``a[b][0][c]`` form fields."""
    fields: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            fields.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_name = f"{name}[{index}]"
                if isinstance(item, dict):
                    fields.extend(encode_form(item, item_name))
                else:
                    fields.append((item_name, str(item)))
        elif isinstance(value, bool):
            fields.append((name, "true" if value else "false"))
        else:
            fields.append((name, str(value)))
    return fields


class PaymentGateway:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else config.STRIPE_SECRET_KEY
        self.api_base = (api_base or config.STRIPE_API_BASE).rstrip("/")
        self._client = http_client or httpx.Client(
            timeout=timeout or config.PAYMENT_HTTP_TIMEOUT_SECONDS,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict[str, Any]:
        if not self.secret_key:
            raise PaymentGatewayError("Payment processor is not configured")

        try:
            response = self._client.request(
                method,
                f"{self.api_base}{path}",
                data=dict(encode_form(data)) if data else None,
                headers={"Authorization": f"Bearer {self.secret_key}"},
            )
        except httpx.HTTPError as exc:
            logger.error(f"Payment processor unreachable: {method} {path}: {exc}")
            raise PaymentGatewayError("Payment processor unreachable") from exc

        if response.status_code >= 400:
            try:
                detail = response.json().get("error", {}).get("message") or response.text
            except ValueError:
                detail = response.text
            logger.error(f"Payment processor error {response.status_code} on {method} {path}: {detail}")
            raise PaymentGatewayError(detail, status_code=response.status_code)

        return response.json()

    def create_checkout_session(
        self,
        *,
        appointment_id: int,
        amount_cents: int,
        product_name: str,
        description: str,
        success_url: str,
        cancel_url: str,
        currency: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> dict[str, Any]:
        payload = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency or config.CURRENCY,
                        "product_data": {"name": product_name, "description": description},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "payment_intent_data": {
                "capture_method": "manual",
                "metadata": {"appointmentId": appointment_id},
            },
            "metadata": {"appointmentId": appointment_id},
            "client_reference_id": appointment_id,
            "customer_email": customer_email,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        return self._request("POST", "/checkout/sessions", payload)

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        return self._request("GET", f"/checkout/sessions/{session_id}")

    def retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        return self._request("GET", f"/payment_intents/{payment_intent_id}")

    def capture_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        return self._request("POST", f"/payment_intents/{payment_intent_id}/capture")

    def cancel_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        return self._request("POST", f"/payment_intents/{payment_intent_id}/cancel")

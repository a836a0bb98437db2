import logging
import time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from urllib.parse import quote

import requests
from requests.auth import HTTPBasicAuth

from src.models.gateway import Address, CustomerDetails, GatewayResponse, PaymentRequest
from src.payments.config import GatewayConfig
from src.payments.errors import GatewayConnectionError, GatewayError, GatewayTimeoutError
from src.payments.retry import RetryManager


logger = logging.getLogger(__name__)

COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}

ENABLED_PAYMENTS = [
    "credit_card",
    "bank_transfer",
    "echannel",
    "permata_va",
    "bca_va",
    "bni_va",
    "bri_va",
    "cimb_va",
    "other_va",
    "gopay",
    "shopeepay",
    "qris",
]

CHARGE_EXPIRY_MINUTES = 60


class GatewayClient:
    """HTTP client for the payment gateway REST API.

    Every reply is normalized into a ``GatewayResponse``; raw provider JSON
    never leaves this class. Only ``get_status`` is retried, since it is the
    only idempotent read. ``create_transaction`` is never retried because a
    repeated charge without an idempotency key could bill the customer twice.
    """

    def __init__(
        self,
        config: GatewayConfig,
        session: requests.Session | None = None,
        status_retry: RetryManager | None = None,
        sleep=time.sleep,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.auth = HTTPBasicAuth(config.server_key, "")
        self.status_retry = status_retry or RetryManager.exponential()
        self._sleep = sleep

    def create_transaction(self, request: PaymentRequest) -> GatewayResponse:
        payload = self._charge_payload(request)
        data = self._request("POST", "/charge", payload)
        # Snap-style charge replies carry only a token; a new charge is pending.
        return self._transform_response(data, default_status="pending")

    def get_status(self, order_id: str) -> GatewayResponse:
        path = f"/{quote(order_id, safe='')}/status"

        def _log_retry(exc: GatewayError, delay: float) -> None:
            logger.warning(
                "Status query for order %s failed (%s), retrying in %.2fs",
                order_id, exc.message, delay,
            )

        data = self.status_retry.run(
            lambda: self._request("GET", path),
            retry_on=(GatewayError,),
            # Timeouts and refused connections carry no response status.
            status_of=lambda exc: None if exc.retryable else exc.status_code,
            sleep=self._sleep,
            on_retry=_log_retry,
        )
        return self._transform_response(data)

    def cancel(self, order_id: str) -> GatewayResponse:
        data = self._request("POST", f"/{quote(order_id, safe='')}/cancel")
        return self._transform_response(data)

    def refund(self, order_id: str, amount: int | None = None, reason: str | None = None) -> GatewayResponse:
        """Refund a settled charge. Without an amount the gateway refunds in full."""
        payload = {}
        if amount is not None:
            payload["amount"] = amount
        if reason:
            payload["reason"] = reason
        data = self._request("POST", f"/{quote(order_id, safe='')}/refund", payload)
        return self._transform_response(data)

    def client_config(self) -> dict:
        return {
            "client_key": self.config.client_key,
            "environment": self.config.environment,
        }

    def close(self) -> None:
        self.session.close()

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        url = f"{self.config.base_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                json=payload,
                headers=COMMON_HEADERS,
                auth=self.auth,
                timeout=self.config.timeout_seconds,
            )
        except requests.exceptions.Timeout:
            raise GatewayTimeoutError(
                f"Gateway request timed out after {self.config.timeout_seconds}s: {method} {path}"
            ) from None
        except requests.exceptions.ConnectionError as exc:
            raise GatewayConnectionError(f"Could not reach gateway: {method} {path}") from exc
        except requests.exceptions.RequestException as exc:
            raise GatewayError(f"Gateway request failed: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise GatewayError(
                f"Gateway API error: {resp.status_code} - {resp.text}",
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise GatewayError(
                "Gateway returned an unreadable body",
                status_code=resp.status_code,
                body=resp.text,
            )
        return data

    def _charge_payload(self, request: PaymentRequest) -> dict:
        site_url = self.config.site_url.rstrip("/")
        return {
            "transaction_details": {
                "order_id": request.order_id,
                "gross_amount": request.amount,
            },
            "customer_details": _customer_payload(request.customer),
            "item_details": [
                {
                    key: value
                    for key, value in {
                        "id": item.id,
                        "price": item.price,
                        "quantity": item.quantity,
                        "name": item.name,
                        "category": item.category,
                        "merchant_name": item.merchant_name,
                    }.items()
                    if value is not None
                }
                for item in request.items
            ],
            "enabled_payments": self._enabled_payments(request.payment_method),
            "callbacks": {
                "finish": f"{site_url}/payment/finish",
                "error": f"{site_url}/payment/error",
                "pending": f"{site_url}/payment/pending",
            },
            "expiry": {
                "unit": "minutes",
                "duration": CHARGE_EXPIRY_MINUTES,
            },
        }

    @staticmethod
    def _enabled_payments(method: str | None) -> list[str]:
        if method:
            return [method]
        return list(ENABLED_PAYMENTS)

    @staticmethod
    def _transform_response(data: dict, default_status: str = "") -> GatewayResponse:
        order_id = str(data.get("order_id") or "")
        return GatewayResponse(
            transaction_id=str(data.get("transaction_id") or order_id),
            order_id=order_id,
            status_code=str(data.get("status_code") or ""),
            status_message=str(data.get("status_message") or ""),
            transaction_status=str(data.get("transaction_status") or default_status),
            payment_type=data.get("payment_type"),
            fraud_status=data.get("fraud_status"),
            redirect_url=data.get("redirect_url"),
            token=data.get("token"),
            approval_code=data.get("approval_code"),
            gross_amount=_parse_amount(data.get("gross_amount")),
        )


def _customer_payload(customer: CustomerDetails) -> dict:
    payload = {
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "email": customer.email,
        "phone": customer.phone,
    }
    if customer.billing_address:
        payload["billing_address"] = _address_payload(customer.billing_address)
    if customer.shipping_address:
        payload["shipping_address"] = _address_payload(customer.shipping_address)
    return payload


def _address_payload(address: Address) -> dict:
    return {
        "first_name": address.first_name,
        "last_name": address.last_name,
        "address": address.address,
        "city": address.city,
        "postal_code": address.postal_code,
        "phone": address.phone,
        "country_code": address.country_code,
    }


def _parse_amount(value) -> int | None:
    """Gateway amounts arrive as strings like "50000.00"."""
    if value is None or value == "":
        return None
    try:
        return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        logger.warning("Unparseable gross_amount from gateway: %r", value)
        return None

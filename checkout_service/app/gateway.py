"""Pesapal v3 client.

Every call carries a bounded timeout. A timeout surfaces as GatewayTimeout and
any other transport failure or malformed answer as UpstreamError, so callers
can tell "we could not reach the gateway" apart from "the gateway says the
payment failed".
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import requests
import structlog

from .config import PesapalConfig
from .errors import GatewayTimeout, UpstreamError

log = structlog.get_logger().bind(component="pesapal_client")


def _has_error(error) -> bool:
    if isinstance(error, dict):
        return any(error.get(key) for key in ("error_type", "code", "message"))
    return bool(error)


@dataclass
class PaymentSession:
    redirect_url: str
    tracking_id: str


@dataclass
class GatewayStatus:
    status_code: int
    description: str = ""
    merchant_reference: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    success_status_code: int

    def request_token(self) -> str: ...

    def submit_order(self, order_id: int, amount: Decimal, currency: str, callback_url: str,
                     customer: Dict[str, Any]) -> PaymentSession: ...

    def get_status(self, tracking_id: str) -> GatewayStatus: ...


class PesapalClient:
    def __init__(self, config: PesapalConfig):
        self.config = config
        self.success_status_code = config.success_status_code

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _call(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        url = self._url(path)
        try:
            response = requests.request(
                method, url, headers=self._headers(token), timeout=self.config.timeout_seconds, **kwargs
            )
            response.raise_for_status() # Raises an exception for 4xx/5xx status codes
            data = response.json()
        except requests.exceptions.Timeout as exc:
            log.warning("gateway_timeout", path=path)
            raise GatewayTimeout(f"Pesapal timed out on {path}") from exc
        except requests.exceptions.RequestException as exc:
            log.error("gateway_request_failed", path=path, error=str(exc))
            raise UpstreamError(f"Pesapal request failed on {path}: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(f"Pesapal returned a non-JSON body on {path}") from exc

        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected Pesapal response on {path}")
        # Pesapal reports business errors with HTTP 200 and an "error" object,
        # which is also present, with null fields, on successful calls.
        if _has_error(data.get("error")):
            log.error("gateway_error_response", path=path, error=data["error"])
            raise UpstreamError(f"Pesapal error on {path}: {data['error']}")
        return data

    def request_token(self) -> str:
        data = self._call("POST", "/api/Auth/RequestToken", json={
            "consumer_key": self.config.consumer_key,
            "consumer_secret": self.config.consumer_secret,
        })
        token = data.get("token")
        if not token:
            raise UpstreamError("Pesapal token response carried no token")
        return token

    def register_ipn(self, token: str) -> str:
        data = self._call("POST", "/api/URLSetup/RegisterIPN", token=token, json={
            "url": self.config.callback_url,
            "ipn_notification_type": "GET",
        })
        ipn_id = data.get("ipn_id")
        if not ipn_id:
            raise UpstreamError("Pesapal IPN registration returned no ipn_id")
        return ipn_id

    def submit_order(self, order_id: int, amount: Decimal, currency: str, callback_url: str,
                     customer: Dict[str, Any]) -> PaymentSession:
        token = self.request_token()
        notification_id = self.config.ipn_id or self.register_ipn(token)
        payload = {
            "id": str(order_id),
            "currency": currency,
            "amount": float(amount),
            "description": f"Payment for order {order_id}",
            "callback_url": f"{callback_url}?orderId={order_id}",
            "notification_id": notification_id,
            "billing_address": {
                "email_address": customer.get("email"),
                "phone_number": customer.get("phone"),
                "first_name": customer.get("first_name"),
                "last_name": customer.get("last_name"),
            },
        }
        data = self._call("POST", "/api/Transactions/SubmitOrderRequest", token=token, json=payload)
        try:
            session = PaymentSession(redirect_url=data["redirect_url"], tracking_id=data["order_tracking_id"])
        except KeyError as exc:
            raise UpstreamError(f"Pesapal order response is missing {exc}") from exc
        log.info("gateway_order_submitted", order_id=order_id, tracking_id=session.tracking_id)
        return session

    def get_status(self, tracking_id: str) -> GatewayStatus:
        token = self.request_token()
        data = self._call(
            "GET", "/api/Transactions/GetTransactionStatus", token=token,
            params={"orderTrackingId": tracking_id},
        )
        code = data.get("status_code")
        # Without a status code the answer says nothing about the payment.
        if code is None:
            raise UpstreamError("Pesapal status response carried no status_code")
        try:
            code = int(code)
        except (TypeError, ValueError) as exc:
            raise UpstreamError(f"Pesapal returned a malformed status code: {code!r}") from exc
        return GatewayStatus(
            status_code=code,
            description=data.get("payment_status_description") or "",
            merchant_reference=data.get("merchant_reference"),
            raw=data,
        )

"""Mobile-money payment adapter (WaafiPay ``API_PURCHASE``).

The core only depends on ``charge(phone, amount, correlation_id)`` returning a
:class:`PaymentResult` or raising. Calls are never retried: every invocation
may move real money.
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from services.calendar import utcnow
from services.errors import PaymentGatewayError

logger = logging.getLogger(__name__)

WAAFI_SUCCESS_CODE = "2001"
WAAFI_APPROVED_STATE = "APPROVED"


@dataclass
class PaymentResult:
    success: bool
    reference_id: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def response_msg(self) -> str:
        return self.data.get("response_msg") or "Payment was not approved"

    @property
    def transaction_id(self) -> Optional[str]:
        params = self.data.get("params") or {}
        return params.get("orderId") or params.get("transactionId")


def format_amount(amount) -> str:
    return str(Decimal(str(amount)).quantize(Decimal("0.01")))


class WaafiPayGateway:
    """Synchronous client for the WaafiPay merchant API."""

    def __init__(
        self,
        *,
        merchant_uid: str,
        api_user_id: str,
        api_key: str,
        base_url: str = "https://api.waafipay.com/asm",
        currency: str = "USD",
        description: str = "Futsal slot payment",
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not (merchant_uid and api_user_id and api_key):
            raise ValueError("WaafiPay merchant credentials must be provided")
        self._merchant_uid = merchant_uid
        self._api_user_id = api_user_id
        self._api_key = api_key
        self._base_url = base_url
        self._currency = currency
        self._description = description
        self._timeout = timeout
        self._transport = transport

    def build_payload(self, phone: str, amount, correlation_id: str, reference_id: str) -> Dict[str, Any]:
        return {
            "schemaVersion": "1.0",
            "requestId": str(uuid.uuid4()),
            "timestamp": utcnow().isoformat() + "Z",
            "channelName": "WEB",
            "serviceName": "API_PURCHASE",
            "serviceParams": {
                "merchantUid": self._merchant_uid,
                "apiUserId": self._api_user_id,
                "apiKey": self._api_key,
                "paymentMethod": "MWALLET_ACCOUNT",
                "payerInfo": {"accountNo": phone},
                "transactionInfo": {
                    "referenceId": reference_id,
                    "invoiceId": correlation_id,
                    "amount": format_amount(amount),
                    "currency": self._currency,
                    "description": self._description,
                },
            },
        }

    def charge(self, phone: str, amount, correlation_id: str) -> PaymentResult:
        reference_id = f"{correlation_id}-{uuid.uuid4().hex[:12]}"
        payload = self.build_payload(phone, amount, correlation_id, reference_id)

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(
                    self._base_url,
                    json=payload,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.warning("WaafiPay request failed for %s: %s", correlation_id, exc)
            raise PaymentGatewayError(f"Payment provider unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise PaymentGatewayError(
                f"Payment provider returned HTTP {response.status_code} without a JSON body"
            ) from exc

        params = body.get("params") or {}
        response_code = str(body.get("responseCode", ""))
        state = params.get("state")
        success = response_code == WAAFI_SUCCESS_CODE and (
            state is None or str(state).upper() == WAAFI_APPROVED_STATE
        )
        logger.info(
            "WaafiPay %s for %s: code=%s state=%s",
            "approved" if success else "declined", correlation_id, response_code, state,
        )
        return PaymentResult(
            success=success,
            reference_id=(params.get("referenceId") or reference_id) if success else None,
            data={
                "response_code": response_code,
                "response_msg": body.get("responseMsg"),
                "params": params,
            },
        )


class UnconfiguredGateway:
    """Installed when merchant credentials are missing; every charge fails."""

    def charge(self, phone: str, amount, correlation_id: str) -> PaymentResult:
        raise PaymentGatewayError("Payment provider not configured (WAAFI_MERCHANT_UID / WAAFI_API_USER_ID / WAAFI_API_KEY)")


def build_gateway(config):
    merchant_uid = config.get("WAAFI_MERCHANT_UID")
    api_user_id = config.get("WAAFI_API_USER_ID")
    api_key = config.get("WAAFI_API_KEY")
    if not (merchant_uid and api_user_id and api_key):
        return UnconfiguredGateway()
    return WaafiPayGateway(
        merchant_uid=merchant_uid,
        api_user_id=api_user_id,
        api_key=api_key,
        base_url=config.get("WAAFI_API_URL", "https://api.waafipay.com/asm"),
        currency=config.get("WAAFI_CURRENCY", "USD"),
        timeout=config.get("WAAFI_TIMEOUT_SECONDS", 60.0),
    )

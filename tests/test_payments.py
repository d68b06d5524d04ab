import json
from decimal import Decimal

import httpx
import pytest
from httpx import MockTransport, Response

from services.errors import PaymentGatewayError
from services.payments import UnconfiguredGateway, WaafiPayGateway, build_gateway, format_amount


def _gateway(handler):
    return WaafiPayGateway(
        merchant_uid="M0910291",
        api_user_id="1000416",
        api_key="API-test",
        base_url="https://waafi.test/asm",
        transport=MockTransport(handler),
    )


def test_approved_purchase():
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        return Response(200, json={
            "responseCode": "2001",
            "responseMsg": "RCS_SUCCESS",
            "params": {"state": "APPROVED", "referenceId": "R-77", "orderId": "O-9"},
        })

    result = _gateway(handler).charge("252611000001", Decimal("25"), "42")

    assert result.success
    assert result.reference_id == "R-77"
    assert result.transaction_id == "O-9"

    params = captured["body"]["serviceParams"]
    assert captured["body"]["serviceName"] == "API_PURCHASE"
    assert params["payerInfo"] == {"accountNo": "252611000001"}
    assert params["transactionInfo"]["amount"] == "25.00"
    assert params["transactionInfo"]["invoiceId"] == "42"
    assert params["transactionInfo"]["referenceId"].startswith("42-")


def test_success_without_provider_reference_uses_generated_one():
    def handler(request):
        return Response(200, json={"responseCode": "2001", "params": {}})

    result = _gateway(handler).charge("252611000001", 10, "7")

    assert result.success
    assert result.reference_id.startswith("7-")


def test_declined_purchase():
    def handler(request):
        return Response(200, json={"responseCode": "5310", "responseMsg": "RCS_USER_REJECTED", "params": {}})

    result = _gateway(handler).charge("252611000001", 10, "8")

    assert not result.success
    assert result.reference_id is None
    assert result.response_msg == "RCS_USER_REJECTED"


def test_success_code_with_rejected_state_is_declined():
    def handler(request):
        return Response(200, json={"responseCode": "2001", "params": {"state": "REJECTED"}})

    assert not _gateway(handler).charge("252611000001", 10, "9").success


def test_transport_error_raises_gateway_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentGatewayError):
        _gateway(handler).charge("252611000001", 10, "10")


def test_non_json_body_raises_gateway_error():
    def handler(request):
        return Response(502, text="Bad gateway")

    with pytest.raises(PaymentGatewayError):
        _gateway(handler).charge("252611000001", 10, "11")


def test_missing_credentials_build_unconfigured_gateway():
    gateway = build_gateway({"WAAFI_MERCHANT_UID": "M1"})
    assert isinstance(gateway, UnconfiguredGateway)
    with pytest.raises(PaymentGatewayError):
        gateway.charge("252611000001", 10, "12")


def test_constructor_requires_credentials():
    with pytest.raises(ValueError):
        WaafiPayGateway(merchant_uid="", api_user_id="1", api_key="k")


def test_format_amount():
    assert format_amount(25) == "25.00"
    assert format_amount(Decimal("12.5")) == "12.50"
    assert format_amount(7.1) == "7.10"

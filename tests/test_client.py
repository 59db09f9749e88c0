import json
from decimal import Decimal

import httpx
import pytest

from checkout_service import schemas
from checkout_service.client import CheckoutApiClient
from checkout_service.errors import (
    AuthenticationRequired,
    ConflictError,
    CouponConflictError,
    FatalCheckoutError,
    NotFoundError,
    PaymentError,
    TransientError,
    ValidationError,
)


def make_client(handler):
    return CheckoutApiClient("http://checkout.test", user_id="user-1", user_email="ada@example.com",
                             transport=httpx.MockTransport(handler))


def error(status, code=None, message="nope"):
    def handler(request):
        return httpx.Response(status, json={"detail": {"code": code, "message": message, "correlationId": "c1"}})
    return handler


def test_validate_coupon_sends_identity_and_amount():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"valid": False, "error": "Coupon expired"})

    result = make_client(handler).validate_coupon("SAVE10", 3, Decimal("20.00"))

    assert result == schemas.ValidateCouponResponse(valid=False, error="Coupon expired")
    assert seen["headers"]["X-User-Id"] == "user-1"
    assert seen["headers"]["X-User-Email"] == "ada@example.com"
    assert seen["body"] == {"code": "SAVE10", "restaurant_id": 3, "order_amount": "20.00"}


def test_restaurant_status_is_parsed():
    def handler(request):
        assert request.url.path == "/v1/restaurants/3/status"
        return httpx.Response(200, json={"is_open": False, "reason": "manually_closed",
                                         "message": "Restaurant is currently closed"})

    status = make_client(handler).restaurant_status(3)
    assert not status.is_open
    assert status.reason == "manually_closed"


@pytest.mark.parametrize("status, code, expected", [
    (500, "PAYMENT_CAPTURED_ORDER_FAILED", FatalCheckoutError),
    (409, "COUPON_NO_LONGER_VALID", CouponConflictError),
    (409, "TOTALS_CHANGED", ConflictError),
    (401, "AUTHENTICATION_REQUIRED", AuthenticationRequired),
    (404, "RESTAURANT_NOT_FOUND", NotFoundError),
    (402, "PAYMENT_FAILED", PaymentError),
    (503, "PAYMENTS_NOT_CONFIGURED", TransientError),
    (400, "ITEM_UNAVAILABLE", ValidationError),
])
def test_error_responses_map_to_checkout_errors(status, code, expected):
    with pytest.raises(expected) as exc:
        make_client(error(status, code)).restaurant_status(1)
    if expected not in (AuthenticationRequired, FatalCheckoutError, CouponConflictError):
        assert exc.value.code == code
        assert exc.value.message == "nope"


def test_coupon_conflict_keeps_server_message():
    handler = error(409, "COUPON_NO_LONGER_VALID", "Coupon no longer valid: Coupon expired")
    with pytest.raises(CouponConflictError) as exc:
        make_client(handler).restaurant_status(1)
    assert exc.value.message == "Coupon no longer valid: Coupon expired"


def test_non_json_error_body():
    def handler(request):
        return httpx.Response(502, text="<html>bad gateway</html>")

    with pytest.raises(TransientError) as exc:
        make_client(handler).restaurant_status(1)
    assert exc.value.message == "Bad Gateway"


def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransientError) as exc:
        make_client(handler).create_payment_intent(Decimal("10.00"))
    assert exc.value.code == "TIMEOUT"


def test_connection_failure_is_transient():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransientError) as exc:
        make_client(handler).restaurant_status(1)
    assert exc.value.code == "NETWORK_ERROR"

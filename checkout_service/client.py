import logging
from decimal import Decimal
from typing import Optional

import httpx

from . import config, schemas
from .errors import (
    AuthenticationRequired,
    CheckoutError,
    ConflictError,
    CouponConflictError,
    FatalCheckoutError,
    NotFoundError,
    PaymentError,
    TransientError,
    ValidationError,
)

logger = logging.getLogger("checkout-service")


def error_from_response(r: httpx.Response) -> CheckoutError:
    try:
        detail = r.json().get("detail")
    except ValueError:
        detail = None
    if not isinstance(detail, dict):
        detail = {}
    code = detail.get("code")
    message = detail.get("message") or r.reason_phrase or "Request failed"

    if code == FatalCheckoutError.code:
        return FatalCheckoutError(message)
    if code == CouponConflictError.code:
        return CouponConflictError(message)
    if r.status_code == 401:
        return AuthenticationRequired()
    if r.status_code == 404:
        return NotFoundError(message, code=code)
    if r.status_code == 402:
        return PaymentError(message, code=code)
    if r.status_code == 409:
        return ConflictError(message, code=code)
    if r.status_code >= 500:
        return TransientError(message, code=code)
    return ValidationError(message, code=code)


class CheckoutApiClient:
    """HTTP client for the order persistence API, used by the checkout flow."""

    def __init__(self, base_url: str, user_id: str, user_email: Optional[str] = None,
                 timeout: float = config.HTTP_TIMEOUT, transport: Optional[httpx.BaseTransport] = None):
        headers = {"X-User-Id": user_id}
        if user_email:
            headers["X-User-Email"] = user_email
        self.http = httpx.Client(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    def close(self):
        self.http.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            r = self.http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientError("The request timed out, please try again", code="TIMEOUT") from e
        except httpx.TransportError as e:
            raise TransientError("Network error, please try again", code="NETWORK_ERROR") from e
        if r.is_error:
            raise error_from_response(r)
        return r

    def validate_coupon(self, code: str, restaurant_id: int, order_amount: Decimal) -> schemas.ValidateCouponResponse:
        body = schemas.ValidateCouponRequest(code=code, restaurant_id=restaurant_id, order_amount=order_amount)
        r = self._request("POST", "/v1/coupons/validate", json=body.model_dump(mode="json"))
        return schemas.ValidateCouponResponse.model_validate(r.json())

    def create_payment_intent(self, amount: Decimal) -> schemas.PaymentIntentResponse:
        body = schemas.PaymentIntentRequest(amount=amount)
        r = self._request("POST", "/v1/payments/intent", json=body.model_dump(mode="json"))
        return schemas.PaymentIntentResponse.model_validate(r.json())

    def create_order(self, request: schemas.CreateOrderRequest) -> schemas.OrderRead:
        r = self._request("POST", "/v1/orders", json=request.model_dump(mode="json"))
        return schemas.OrderRead.model_validate(r.json())

    def restaurant_status(self, restaurant_id: int) -> schemas.RestaurantStatus:
        r = self._request("GET", f"/v1/restaurants/{restaurant_id}/status")
        return schemas.RestaurantStatus.model_validate(r.json())

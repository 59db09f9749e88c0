"""
Checkout error taxonomy.

ValidationError and ConflictError are user-correctable and handled where they
are raised; TransientError is retried by an explicit user action; PaymentError
carries the provider's message verbatim; FatalCheckoutError means money moved
but no order exists and must reach the user.
"""


class CheckoutError(Exception):
    code = "CHECKOUT_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(CheckoutError):
    code = "VALIDATION_ERROR"


class EmptyCartError(ValidationError):
    code = "EMPTY_CART"

    def __init__(self, message: str = "Your cart is empty"):
        super().__init__(message)


class MultipleRestaurantsError(ValidationError):
    code = "MULTIPLE_RESTAURANTS"

    def __init__(self, message: str = "Orders can only contain items from a single restaurant"):
        super().__init__(message)


class RestaurantClosedError(ValidationError):
    code = "RESTAURANT_CLOSED"


class ConflictError(CheckoutError):
    code = "CONFLICT"


class CouponConflictError(ConflictError):
    code = "COUPON_NO_LONGER_VALID"

    def __init__(self, message: str = "Coupon no longer valid"):
        super().__init__(message)


class TransientError(CheckoutError):
    code = "TRANSIENT"


class PaymentError(CheckoutError):
    code = "PAYMENT_FAILED"


class FatalCheckoutError(CheckoutError):
    code = "PAYMENT_CAPTURED_ORDER_FAILED"


class AuthenticationRequired(CheckoutError):
    code = "AUTHENTICATION_REQUIRED"

    def __init__(self, message: str = "Please sign in to place an order"):
        super().__init__(message)


class InvalidTransition(CheckoutError):
    code = "INVALID_TRANSITION"


class NotFoundError(CheckoutError):
    code = "NOT_FOUND"


class PaymentsNotConfigured(CheckoutError):
    code = "PAYMENTS_NOT_CONFIGURED"

    def __init__(self, message: str = "Payments are not configured"):
        super().__init__(message)

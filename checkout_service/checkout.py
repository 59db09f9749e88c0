"""
Client-side checkout flow.

CART_REVIEW -> CONTACT_INFO -> COUPON_OPTIONAL -> PAYMENT_SELECTION
-> SUBMITTING -> CONFIRMED | FAILED, with CANCELLED reachable from any state
before SUBMITTING.

All flow state lives in a ``CheckoutSession``, a plain serializable model that
is written to a ``SessionStore`` after every step. User-correctable problems
(validation and conflict errors) are recorded on the session and never raised.
A payment that went through without an order being created is raised as
``FatalCheckoutError``.
"""
import logging
import re
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel

from . import schemas
from .config import PRICING_POLICY, PricingPolicy
from .errors import (
    AuthenticationRequired,
    CheckoutError,
    ConflictError,
    CouponConflictError,
    FatalCheckoutError,
    InvalidTransition,
    MultipleRestaurantsError,
    PaymentError,
    TransientError,
)
from .pricing import assemble, restaurant_for, to_minor_units

logger = logging.getLogger("checkout-service")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
GENERIC_COUPON_ERROR = "Invalid coupon code"
RETRY_MESSAGE = "Failed to place order. Please try again."


class CheckoutState(str, Enum):
    CART_REVIEW = "cart_review"
    CONTACT_INFO = "contact_info"
    COUPON_OPTIONAL = "coupon_optional"
    PAYMENT_SELECTION = "payment_selection"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


CANCELLABLE = {
    CheckoutState.CART_REVIEW,
    CheckoutState.CONTACT_INFO,
    CheckoutState.COUPON_OPTIONAL,
    CheckoutState.PAYMENT_SELECTION,
    CheckoutState.FAILED,
}


class AppliedCoupon(BaseModel):
    coupon_id: int
    code: str
    discount_type: schemas.DiscountType
    discount_value: Decimal
    discount_amount: Decimal


class CheckoutSession(BaseModel):
    session_id: str
    user_id: str
    state: CheckoutState = CheckoutState.CART_REVIEW
    lines: List[schemas.CartLine] = []
    restaurant_id: Optional[int] = None
    customer: Optional[schemas.CustomerInfo] = None
    delivery: Optional[schemas.DeliveryInfo] = None
    coupon: Optional[AppliedCoupon] = None
    coupon_error: Optional[str] = None
    payment_method: Optional[schemas.PaymentMethod] = None
    payment_intent_id: Optional[str] = None
    totals: schemas.OrderTotals = schemas.OrderTotals()
    order_id: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False


# ----- Collaborators -----

class CartStore(Protocol):
    @property
    def lines(self) -> List[schemas.CartLine]: ...

    def clear(self) -> None: ...


@dataclass
class User:
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class AuthProvider(Protocol):
    @property
    def current_user(self) -> Optional[User]: ...


class RestaurantStatusProvider(Protocol):
    def restaurant_status(self, restaurant_id: int) -> schemas.RestaurantStatus: ...


@dataclass
class PaymentResult:
    succeeded: bool
    error_message: Optional[str] = None


class PaymentProvider(Protocol):
    def confirm(self, client_secret: str, amount_minor: int) -> PaymentResult: ...


class SessionStore:
    """Keeps sessions as JSON so anything stored here can be reloaded elsewhere."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def save(self, session: CheckoutSession):
        self._data[session.session_id] = session.model_dump_json()

    def load(self, session_id: str) -> Optional[CheckoutSession]:
        raw = self._data.get(session_id)
        return CheckoutSession.model_validate_json(raw) if raw else None

    def delete(self, session_id: str):
        self._data.pop(session_id, None)


class LocalOrderList:
    """The customer's order list as shown in the UI, including optimistic entries."""

    def __init__(self):
        self.entries: List[dict] = []

    def add_pending(self, session: CheckoutSession) -> str:
        temp_id = f"pending-{uuid.uuid4().hex[:8]}"
        self.entries.insert(0, {
            "id": temp_id,
            "status": "pending",
            "total": session.totals.rounded().total,
            "restaurant_id": session.restaurant_id,
            "optimistic": True,
        })
        return temp_id

    def confirm(self, temp_id: str, order: schemas.OrderRead):
        for entry in self.entries:
            if entry["id"] == temp_id:
                entry.update(id=order.order_id, status=order.status, total=order.total_amount, optimistic=False)
                return

    def rollback(self, temp_id: str):
        self.entries = [e for e in self.entries if e["id"] != temp_id]


# ----- State machine -----

class CheckoutFlow:
    def __init__(self, cart: CartStore, auth: AuthProvider, api, restaurants: RestaurantStatusProvider,
                 payment_provider: Optional[PaymentProvider] = None, orders: Optional[LocalOrderList] = None,
                 store: Optional[SessionStore] = None, policy: PricingPolicy = PRICING_POLICY):
        self.cart = cart
        self.auth = auth
        self.api = api
        self.restaurants = restaurants
        self.payment_provider = payment_provider
        self.orders = orders if orders is not None else LocalOrderList()
        self.store = store if store is not None else SessionStore()
        self.policy = policy
        self.session: Optional[CheckoutSession] = None

    # -- helpers --

    def _save(self):
        self.store.save(self.session)
        return self.session

    def _require(self, *states: CheckoutState):
        if self.session is None:
            raise InvalidTransition("Checkout has not been started")
        if self.session.state not in states:
            raise InvalidTransition(f"Not allowed in state {self.session.state.value}")

    def _clear_error(self):
        self.session.error = None
        self.session.error_code = None
        self.session.retryable = False

    def _fail_inline(self, e: CheckoutError, retryable: bool = False):
        self.session.error = e.message
        self.session.error_code = e.code
        self.session.retryable = retryable
        return self._save()

    def _recompute(self):
        self.session.totals = assemble(self.session.lines, self.session.coupon, self.policy)
        if self.session.coupon is not None:
            self.session.coupon.discount_amount = self.session.totals.discount_amount

    def _check_restaurant_open(self):
        status = self.restaurants.restaurant_status(self.session.restaurant_id)
        if not status.is_open:
            message = "This restaurant is currently closed."
            if status.next_opening_time:
                message = f"{message} {status.next_opening_time}"
            return message
        return None

    # -- transitions --

    def start(self) -> CheckoutSession:
        user = self.auth.current_user
        if user is None:
            raise AuthenticationRequired()

        self.session = CheckoutSession(session_id=uuid.uuid4().hex, user_id=user.id)
        self.session.customer = schemas.CustomerInfo.model_construct(
            first_name=user.first_name or "",
            last_name=user.last_name or "",
            email=user.email or "",
            phone="",
        )
        return self.review_cart()

    def resume(self, session_id: str) -> Optional[CheckoutSession]:
        self.session = self.store.load(session_id)
        return self.session

    def review_cart(self) -> CheckoutSession:
        """Snapshot the cart; advance only if it is orderable right now."""
        self._require(CheckoutState.CART_REVIEW)
        self._clear_error()
        session = self.session
        session.lines = [line.model_copy() for line in self.cart.lines]

        if not session.lines:
            session.totals = schemas.OrderTotals()
            session.error, session.error_code = "Your cart is empty", "EMPTY_CART"
            return self._save()
        try:
            session.restaurant_id = restaurant_for(session.lines)
        except MultipleRestaurantsError as e:
            return self._fail_inline(e)

        self._recompute()
        try:
            closed = self._check_restaurant_open()
        except TransientError as e:
            return self._fail_inline(e, retryable=True)
        if closed:
            session.error, session.error_code = closed, "RESTAURANT_CLOSED"
            return self._save()

        session.state = CheckoutState.CONTACT_INFO
        return self._save()

    def submit_contact(self, customer: schemas.CustomerInfo, delivery: schemas.DeliveryInfo) -> CheckoutSession:
        self._require(CheckoutState.CONTACT_INFO)
        self._clear_error()

        required = [
            (customer.first_name, "first name"),
            (customer.last_name, "last name"),
            (customer.email, "email"),
            (customer.phone, "phone number"),
            (delivery.street_address, "street address"),
            (delivery.city, "city"),
            (delivery.state, "state/province"),
            (delivery.postal_code, "postal code"),
        ]
        for value, label in required:
            if not (value or "").strip():
                self.session.error, self.session.error_code = f"Please enter your {label}.", "MISSING_FIELD"
                return self._save()
        if not EMAIL_RE.match(customer.email):
            self.session.error, self.session.error_code = "Please enter a valid email address.", "INVALID_EMAIL"
            return self._save()
        if len(re.sub(r"\D", "", customer.phone)) < 10:
            self.session.error = "Please enter a valid phone number with at least 10 digits."
            self.session.error_code = "INVALID_PHONE"
            return self._save()

        self.session.customer = customer
        self.session.delivery = delivery
        self.session.state = CheckoutState.COUPON_OPTIONAL
        return self._save()

    def apply_coupon(self, code: str) -> CheckoutSession:
        self._require(CheckoutState.COUPON_OPTIONAL)
        session = self.session
        session.coupon_error = None
        if not code or not code.strip():
            return self._save()

        try:
            result = self.api.validate_coupon(code.strip(), session.restaurant_id, session.totals.subtotal)
        except CheckoutError as e:
            logger.warning(f"Coupon validation failed: {e.message}")
            session.coupon_error = GENERIC_COUPON_ERROR
            return self._save()

        if not result.valid or result.coupon is None:
            session.coupon_error = result.error or GENERIC_COUPON_ERROR
            return self._save()

        coupon = result.coupon
        session.coupon = AppliedCoupon(
            coupon_id=coupon.coupon_id,
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            discount_amount=Decimal("0"),
        )
        self._recompute()
        return self._save()

    def remove_coupon(self) -> CheckoutSession:
        self._require(CheckoutState.COUPON_OPTIONAL)
        self.session.coupon = None
        self.session.coupon_error = None
        self._recompute()
        return self._save()

    def continue_to_payment(self) -> CheckoutSession:
        self._require(CheckoutState.COUPON_OPTIONAL)
        self.session.state = CheckoutState.PAYMENT_SELECTION
        return self._save()

    def submit(self, payment_method: schemas.PaymentMethod) -> CheckoutSession:
        if self.session is not None and self.session.state == CheckoutState.SUBMITTING:
            # a request is already in flight
            return self.session
        self._require(CheckoutState.PAYMENT_SELECTION, CheckoutState.FAILED)
        if self.session.error_code == FatalCheckoutError.code:
            raise InvalidTransition("Payment already captured for this checkout; contact support")
        self._clear_error()
        session = self.session
        if payment_method == "card" and self.payment_provider is None:
            return self._fail_inline(PaymentError("Card payments are unavailable", code="CARD_UNAVAILABLE"))

        session.payment_method = payment_method
        session.state = CheckoutState.SUBMITTING
        self._save()

        # nothing below may leave the session in SUBMITTING
        try:
            return self._submit(payment_method)
        except FatalCheckoutError:
            raise
        except CheckoutError as e:
            session.state = CheckoutState.FAILED
            return self._fail_inline(e, retryable=isinstance(e, TransientError))
        except Exception:
            logger.exception(f"Checkout {session.session_id} submission failed")
            session.state = CheckoutState.FAILED
            return self._fail_inline(TransientError(RETRY_MESSAGE, code="UNEXPECTED_ERROR"), retryable=True)

    def _submit(self, payment_method: schemas.PaymentMethod) -> CheckoutSession:
        session = self.session
        closed = self._check_restaurant_open()
        if closed:
            session.state = CheckoutState.PAYMENT_SELECTION
            session.error, session.error_code = closed, "RESTAURANT_CLOSED"
            return self._save()

        payment_captured = False
        if payment_method == "card":
            outcome = self._take_payment()
            if outcome is not None:
                return outcome
            payment_captured = True

        return self._place_order(payment_captured)

    def _take_payment(self) -> Optional[CheckoutSession]:
        session = self.session
        total = session.totals.rounded().total
        try:
            intent = self.api.create_payment_intent(total)
        except CheckoutError as e:
            session.state = CheckoutState.PAYMENT_SELECTION
            return self._fail_inline(e, retryable=isinstance(e, TransientError))

        result = self.payment_provider.confirm(intent.client_secret, to_minor_units(total))
        if not result.succeeded:
            session.state = CheckoutState.PAYMENT_SELECTION
            return self._fail_inline(PaymentError(result.error_message or "Payment failed"), retryable=True)

        session.payment_intent_id = intent.payment_intent_id
        self._save()
        return None

    def _place_order(self, payment_captured: bool) -> CheckoutSession:
        session = self.session
        temp_id = self.orders.add_pending(session)
        try:
            request = schemas.CreateOrderRequest(
                restaurant_id=session.restaurant_id,
                items=[schemas.OrderItemRequest(item_id=line.item_id, quantity=line.quantity)
                       for line in session.lines],
                totals=session.totals.rounded(),
                customer=session.customer,
                delivery=session.delivery,
                coupon_code=session.coupon.code if session.coupon else None,
                payment_method=session.payment_method,
                payment_intent_id=session.payment_intent_id,
            )
            order = self.api.create_order(request)
        except Exception as e:
            self.orders.rollback(temp_id)
            if payment_captured or isinstance(e, FatalCheckoutError):
                return self._fatal(e)
            if not isinstance(e, CheckoutError):
                logger.exception(f"Order creation failed for checkout {session.session_id}")
                e = TransientError(RETRY_MESSAGE, code="UNEXPECTED_ERROR")
            if isinstance(e, CouponConflictError):
                session.coupon = None
                session.coupon_error = e.message
                self._recompute()
                session.state = CheckoutState.COUPON_OPTIONAL
                return self._fail_inline(e)
            session.state = CheckoutState.FAILED
            if isinstance(e, TransientError):
                return self._fail_inline(TransientError(RETRY_MESSAGE, code=e.code), retryable=True)
            # a conflict such as changed totals fails the same way on every resend
            return self._fail_inline(e, retryable=not isinstance(e, ConflictError))

        self.orders.confirm(temp_id, order)
        self.cart.clear()
        session.order_id = order.order_id
        session.state = CheckoutState.CONFIRMED
        logger.info(f"Order {order.order_id} placed from checkout {session.session_id}")
        return self._save()

    def _fatal(self, cause: Exception):
        session = self.session
        logger.error(
            f"Payment {session.payment_intent_id} captured for checkout {session.session_id} "
            f"but order creation failed: {cause}"
        )
        error = FatalCheckoutError(
            "Your payment was processed but your order could not be created. "
            f"Please contact support and quote payment reference {session.payment_intent_id}."
        )
        session.state = CheckoutState.FAILED
        session.error, session.error_code, session.retryable = error.message, error.code, False
        self._save()
        raise error from cause

    def cancel(self) -> CheckoutSession:
        if self.session is None:
            raise InvalidTransition("Checkout has not been started")
        if self.session.state not in CANCELLABLE:
            raise InvalidTransition(f"Cannot cancel checkout in state {self.session.state.value}")
        self.session.state = CheckoutState.CANCELLED
        return self._save()
